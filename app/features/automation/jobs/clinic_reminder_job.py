"""
Clinic appointment reminders.

Runs in hourly buckets. Each run queues one internal reminder per upcoming
appointment inside the tenant's window; the idempotency key includes the
bucket, and a key that already exists is counted as skipped.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.features.automation.context import build_automation_context
from app.features.automation.domain import (
    CLINIC_APPT_REMINDERS_JOB,
    AutomationRule,
    Contact,
    OutboxDraft,
    Tenant,
    resolve_job_config,
)
from app.features.automation.domain.models import CHANNEL_INTERNAL
from app.features.automation.errors import DuplicateOutboxMessageError
from app.features.automation.jobs.base import AutomationJob, JobSummary, run_scheduler_loop
from app.features.automation.services.template_renderer import render, render_optional
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLINIC_APPOINTMENTS_FEATURE = "clinic.appointments"
CLINIC_REMINDER_TEMPLATE_KEY = "clinic_appt_reminder"
FALLBACK_TEMPLATE = "Reminder: appointment scheduled at {{scheduled_at}} for {{name}}."
CONTACT_FALLBACK_NAME = "client"


def hour_bucket(now: datetime) -> str:
    """UTC hour as ``YYYY-MM-DDTHH``."""
    return now.astimezone(UTC).strftime("%Y-%m-%dT%H")


def reminder_idempotency_key(appointment_id: str, bucket: str) -> str:
    return f"clinic_reminder:{appointment_id}:{bucket}"


def reminder_send_time(scheduled_at: datetime, lead_time_hours: int, now: datetime) -> datetime:
    """``lead_time_hours`` before the appointment, never earlier than now."""
    send_at = scheduled_at - timedelta(hours=lead_time_hours)
    return max(send_at, now)


class ClinicReminderSummary(JobSummary):
    COUNTERS = ("reminders_created", "reminders_skipped")


class ClinicReminderJob(AutomationJob):
    job_name = CLINIC_APPT_REMINDERS_JOB
    feature_key = CLINIC_APPOINTMENTS_FEATURE
    summary_class = ClinicReminderSummary
    tenant_error_kind = "Appointments"

    def build_run_key(self, now: datetime) -> str:
        return f"{CLINIC_APPT_REMINDERS_JOB}:{hour_bucket(now)}"

    async def process_tenant(
        self,
        rule: AutomationRule,
        tenant: Tenant,
        now: datetime,
        summary: ClinicReminderSummary,
        *,
        dry: bool,
    ) -> None:
        ctx = self.ctx
        config = resolve_job_config(CLINIC_APPT_REMINDERS_JOB, rule.config)
        bucket = hour_bucket(now)
        window_end = now + timedelta(hours=config["window_hours"])

        template = await ctx.tenants.get_active_template(
            tenant.id, CLINIC_REMINDER_TEMPLATE_KEY, CHANNEL_INTERNAL
        )
        appointments = await ctx.clinic.list_upcoming_appointments(tenant.id, now, window_end)

        existing_keys: set[str] = set()
        if dry and appointments:
            existing_keys = await ctx.outbox.existing_keys(
                tenant.id,
                [reminder_idempotency_key(appointment.id, bucket) for appointment in appointments],
            )

        for appointment in appointments:
            try:
                contact = appointment.contact or Contact(id=None)
                scheduled_at = appointment.scheduled_at.astimezone(UTC).isoformat()
                variables = {
                    "name": contact.display_name(CONTACT_FALLBACK_NAME),
                    "scheduled_at": scheduled_at,
                    "appointment_id": appointment.id,
                }
                key = reminder_idempotency_key(appointment.id, bucket)
                send_at = reminder_send_time(
                    appointment.scheduled_at, config["lead_time_hours"], now
                )

                if dry:
                    exists = key in existing_keys
                    if exists:
                        summary.reminders_skipped += 1
                    else:
                        summary.reminders_created += 1
                    summary.add_preview(
                        {
                            "tenant_id": tenant.id,
                            "appointment_id": appointment.id,
                            "scheduled_at": scheduled_at,
                            "send_at": send_at.isoformat(),
                            "outbox_exists": exists,
                        }
                    )
                    continue

                draft = OutboxDraft(
                    tenant_id=tenant.id,
                    channel=CHANNEL_INTERNAL,
                    idempotency_key=key,
                    body=render(template.body if template else FALLBACK_TEMPLATE, variables),
                    subject=render_optional(template.subject if template else None, variables),
                    scheduled_at=send_at,
                    contact_id=appointment.contact_id,
                    to_phone=contact.phone,
                    to_email=contact.email,
                    template_key=template.key if template else None,
                    related_table="clinic_appointments",
                    related_id=appointment.id,
                    meta={
                        "job": CLINIC_APPT_REMINDERS_JOB,
                        "appointment_id": appointment.id,
                        "scheduled_at": scheduled_at,
                        "bucket": bucket,
                    },
                )
                try:
                    await ctx.outbox.insert(draft)
                except DuplicateOutboxMessageError:
                    summary.reminders_skipped += 1
                else:
                    summary.reminders_created += 1

            except Exception as e:
                summary.record_error("Outbox", appointment.id, e)

        logger.info(
            "Clinic reminders processed for tenant",
            tenant_id=tenant.id,
            appointments=len(appointments),
            window_hours=config["window_hours"],
            dry_run=dry,
        )


async def run_clinic_reminder_job(*, force: bool = False, dry: bool = False) -> dict[str, Any]:
    """Run one invocation with the Postgres-backed context."""
    return await ClinicReminderJob(build_automation_context()).run_once(force=force, dry=dry)


async def start_clinic_reminder_scheduler() -> None:
    await run_scheduler_loop(
        CLINIC_APPT_REMINDERS_JOB,
        run_clinic_reminder_job,
        settings.get_job_config()["clinic_reminders_interval_minutes"],
    )
