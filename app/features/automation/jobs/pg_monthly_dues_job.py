"""
Monthly PG rent dues.

Once per UTC calendar month, every active occupancy with a positive rent
gets one pg_payments due row plus an internal outbox reminder. Both are
created together (or found together) by PgRepository.create_due_with_outbox,
so the job can be re-run for the same month without duplicating anything.
"""

import calendar
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from app.config import settings
from app.features.automation.context import build_automation_context
from app.features.automation.domain import (
    PG_MONTHLY_DUES_JOB,
    AutomationRule,
    Contact,
    DueDraft,
    OutboxDraft,
    Tenant,
    resolve_job_config,
)
from app.features.automation.domain.models import CHANNEL_INTERNAL
from app.features.automation.jobs.base import AutomationJob, JobSummary, run_scheduler_loop
from app.features.automation.services.template_renderer import render, render_optional
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PG_PAYMENTS_FEATURE = "pg.payments"
PG_DUE_TEMPLATE_KEY = "pg_due_reminder"
FALLBACK_TEMPLATE = "Rent due for {{name}} ({{period_start}}) amount {{amount_due}}."
CONTACT_FALLBACK_NAME = "resident"


def month_period(now: datetime) -> tuple[date, date]:
    """First and last day of ``now``'s calendar month."""
    today = now.date()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def billable_rent(value: Any) -> Decimal | None:
    """Positive rent as Decimal, or None when the occupancy has nothing to bill."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def due_idempotency_key(occupancy_id: str, period_start: date) -> str:
    return f"pg_due:{occupancy_id}:{period_start.isoformat()}"


class PgDuesSummary(JobSummary):
    COUNTERS = (
        "dues_created",
        "dues_skipped",
        "outbox_created",
        "outbox_skipped",
        "occupancies_without_rent",
    )

    def record_due(self, due_created: bool, outbox_created: bool):
        if due_created:
            self.dues_created += 1
        else:
            self.dues_skipped += 1
        if outbox_created:
            self.outbox_created += 1
        else:
            self.outbox_skipped += 1


class PgMonthlyDuesJob(AutomationJob):
    job_name = PG_MONTHLY_DUES_JOB
    feature_key = PG_PAYMENTS_FEATURE
    summary_class = PgDuesSummary
    tenant_error_kind = "Occupancies"

    def build_run_key(self, now: datetime) -> str:
        period_start, _ = month_period(now)
        return f"{PG_MONTHLY_DUES_JOB}:{period_start.isoformat()}"

    async def process_tenant(
        self,
        rule: AutomationRule,
        tenant: Tenant,
        now: datetime,
        summary: PgDuesSummary,
        *,
        dry: bool,
    ) -> None:
        ctx = self.ctx
        config = resolve_job_config(PG_MONTHLY_DUES_JOB, rule.config)
        period_start, period_end = month_period(now)
        due_date = period_start.replace(day=config["due_day"])

        template = await ctx.tenants.get_active_template(
            tenant.id, PG_DUE_TEMPLATE_KEY, CHANNEL_INTERNAL
        )
        occupancies = await ctx.pg.list_active_occupancies(tenant.id)

        billable = []
        for occupancy in occupancies:
            amount = billable_rent(occupancy.monthly_rent)
            if amount is None:
                summary.occupancies_without_rent += 1
            else:
                billable.append((occupancy, amount))

        existing_dues: set[str] = set()
        existing_keys: set[str] = set()
        if dry and billable:
            existing_dues = await ctx.pg.existing_due_occupancies(
                tenant.id, period_start, [occupancy.id for occupancy, _ in billable]
            )
            existing_keys = await ctx.outbox.existing_keys(
                tenant.id,
                [due_idempotency_key(occupancy.id, period_start) for occupancy, _ in billable],
            )

        for occupancy, amount in billable:
            try:
                contact = occupancy.contact or Contact(id=None)
                name = contact.display_name(CONTACT_FALLBACK_NAME)
                variables = {
                    "name": name,
                    "amount_due": f"{amount:.2f}",
                    "due_date": due_date.isoformat(),
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                }
                key = due_idempotency_key(occupancy.id, period_start)

                if dry:
                    due_exists = occupancy.id in existing_dues
                    outbox_exists = key in existing_keys
                    summary.record_due(not due_exists, not outbox_exists)
                    summary.add_preview(
                        {
                            "tenant_id": tenant.id,
                            "occupancy_id": occupancy.id,
                            "amount_due": variables["amount_due"],
                            "due_date": variables["due_date"],
                            "payment_exists": due_exists,
                            "outbox_exists": outbox_exists,
                        }
                    )
                    continue

                due = DueDraft(
                    tenant_id=tenant.id,
                    occupancy_id=occupancy.id,
                    contact_id=occupancy.contact_id,
                    period_start=period_start,
                    period_end=period_end,
                    due_date=due_date,
                    amount_due=amount,
                    meta={"generated_by": "automation", "job": PG_MONTHLY_DUES_JOB},
                )
                message = OutboxDraft(
                    tenant_id=tenant.id,
                    channel=CHANNEL_INTERNAL,
                    idempotency_key=key,
                    body=render(template.body if template else FALLBACK_TEMPLATE, variables),
                    subject=render_optional(template.subject if template else None, variables),
                    scheduled_at=now,
                    contact_id=occupancy.contact_id,
                    to_phone=contact.phone,
                    to_email=contact.email,
                    template_key=template.key if template else None,
                    meta={
                        "job": PG_MONTHLY_DUES_JOB,
                        "occupancy_id": occupancy.id,
                        "period_start": period_start.isoformat(),
                    },
                )
                result = await ctx.pg.create_due_with_outbox(due, message)
                summary.record_due(result.due_created, result.outbox_created)

            except Exception as e:
                summary.record_error("Payment", occupancy.id, e)

        logger.info(
            "PG dues processed for tenant",
            tenant_id=tenant.id,
            occupancies=len(occupancies),
            billable=len(billable),
            dry_run=dry,
        )


async def run_pg_monthly_dues_job(*, force: bool = False, dry: bool = False) -> dict[str, Any]:
    """Run one invocation with the Postgres-backed context."""
    return await PgMonthlyDuesJob(build_automation_context()).run_once(force=force, dry=dry)


async def start_pg_monthly_dues_scheduler() -> None:
    await run_scheduler_loop(
        PG_MONTHLY_DUES_JOB,
        run_pg_monthly_dues_job,
        settings.get_job_config()["pg_dues_interval_minutes"],
    )
