"""
Collaborators shared by the automation jobs and the lead dispatcher.

Jobs receive an AutomationContext instead of importing repository
singletons so tests can hand them in-memory stores and a fixed clock.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from app.config import settings
from app.features.automation.domain import utc_now
from app.features.automation.errors import AutomationConfigError
from app.features.automation.repository import (
    automation_rule_repository,
    clinic_repository,
    job_run_repository,
    lead_repository,
    outbox_repository,
    pg_repository,
    tenant_repository,
)
from app.features.automation.services.webhook_relay import OutboxWebhookRelay


@dataclass(slots=True)
class AutomationContext:
    runs: Any
    rules: Any
    tenants: Any
    outbox: Any
    pg: Any
    clinic: Any
    leads: Any
    webhook: OutboxWebhookRelay
    stale_after: timedelta = timedelta(minutes=30)
    preview_limit: int = 25
    clock: Callable[[], datetime] = field(default=utc_now)


def build_automation_context() -> AutomationContext:
    """
    Wire the Postgres repositories and webhook relay from settings.

    Raises:
        AutomationConfigError: service database URL or key is missing
    """
    if not settings.SUPABASE_DB_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        raise AutomationConfigError("Missing Supabase service env")

    job_config = settings.get_job_config()
    return AutomationContext(
        runs=job_run_repository,
        rules=automation_rule_repository,
        tenants=tenant_repository,
        outbox=outbox_repository,
        pg=pg_repository,
        clinic=clinic_repository,
        leads=lead_repository,
        webhook=OutboxWebhookRelay(
            settings.OUTBOX_WEBHOOK_URL,
            settings.OUTBOX_WEBHOOK_SECRET,
            timeout_seconds=settings.OUTBOX_WEBHOOK_TIMEOUT_SECONDS,
        ),
        stale_after=timedelta(minutes=job_config["stale_run_minutes"]),
        preview_limit=job_config["dry_run_preview_limit"],
    )
