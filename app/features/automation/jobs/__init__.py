from .base import AutomationJob, JobSummary, run_scheduler_loop
from .clinic_reminder_job import (
    ClinicReminderJob,
    run_clinic_reminder_job,
    start_clinic_reminder_scheduler,
)
from .pg_monthly_dues_job import (
    PgMonthlyDuesJob,
    run_pg_monthly_dues_job,
    start_pg_monthly_dues_scheduler,
)

__all__ = [
    "AutomationJob",
    "ClinicReminderJob",
    "JobSummary",
    "PgMonthlyDuesJob",
    "run_clinic_reminder_job",
    "run_pg_monthly_dues_job",
    "run_scheduler_loop",
    "start_clinic_reminder_scheduler",
    "start_pg_monthly_dues_scheduler",
]
