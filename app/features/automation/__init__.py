"""
Automation engine feature package.

Periodic multi-tenant jobs (PG monthly dues, clinic appointment reminders),
the message outbox they feed, and the lead instant-message dispatcher. Every
layer lives here: domain models, repositories, services, jobs and routers.
"""

# Re-export the primary building blocks for easy access.
from .api import automation_router, outbox_router  # noqa: F401
from .context import AutomationContext, build_automation_context  # noqa: F401
from .jobs import (  # noqa: F401
    ClinicReminderJob,
    PgMonthlyDuesJob,
    start_clinic_reminder_scheduler,
    start_pg_monthly_dues_scheduler,
)
from .services import LeadInstantMessageDispatcher, OutboxService  # noqa: F401
