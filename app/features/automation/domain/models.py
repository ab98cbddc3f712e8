"""
Domain models for the automation engine.

Lightweight dataclasses shared by repositories, jobs, services and the API
layer. Rows that support soft delete carry ``deleted_at``; repositories only
return deleted rows when a caller explicitly asks for them.
"""

from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

# Job names (automation_rules.job / job_runs.job)
PG_MONTHLY_DUES_JOB = "pg_monthly_dues"
CLINIC_APPT_REMINDERS_JOB = "clinic_appt_reminders"
AUTOMATION_JOBS = (PG_MONTHLY_DUES_JOB, CLINIC_APPT_REMINDERS_JOB)

# Ledger statuses
RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_FAILED = "failed"

# Outbox channels and statuses
CHANNEL_INTERNAL = "internal"
CHANNEL_WHATSAPP = "whatsapp"
CHANNEL_SMS = "sms"
CHANNEL_EMAIL = "email"
OUTBOX_CHANNELS = (CHANNEL_INTERNAL, CHANNEL_WHATSAPP, CHANNEL_SMS, CHANNEL_EMAIL)

OUTBOX_QUEUED = "queued"
OUTBOX_PROCESSING = "processing"
OUTBOX_SENT = "sent"
OUTBOX_FAILED = "failed"
OUTBOX_CANCELLED = "cancelled"
OUTBOX_STATUSES = (OUTBOX_QUEUED, OUTBOX_PROCESSING, OUTBOX_SENT, OUTBOX_FAILED, OUTBOX_CANCELLED)

# queued -> sent covers the operator confirming a manual (deep link) send
OUTBOX_TRANSITIONS: dict[str, frozenset[str]] = {
    OUTBOX_QUEUED: frozenset({OUTBOX_PROCESSING, OUTBOX_SENT, OUTBOX_CANCELLED}),
    OUTBOX_PROCESSING: frozenset({OUTBOX_SENT, OUTBOX_FAILED, OUTBOX_CANCELLED}),
    OUTBOX_SENT: frozenset({OUTBOX_QUEUED}),
    OUTBOX_FAILED: frozenset({OUTBOX_QUEUED}),
    OUTBOX_CANCELLED: frozenset({OUTBOX_QUEUED}),
}


def utc_now() -> datetime:
    return datetime.now(UTC)


def allowed_sources(target_status: str) -> frozenset[str]:
    """Statuses from which ``target_status`` may be reached."""
    return frozenset(
        source for source, targets in OUTBOX_TRANSITIONS.items() if target_status in targets
    )


def can_transition(current_status: str, target_status: str) -> bool:
    return target_status in OUTBOX_TRANSITIONS.get(current_status, frozenset())


@dataclass(slots=True)
class JobRun:
    """Represents a job_runs ledger row."""

    id: str
    job: str
    run_key: str
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.status == RUN_RUNNING

    def is_stale(self, cutoff: datetime) -> bool:
        """A running row that started before ``cutoff`` is presumed dead."""
        return self.is_running and self.started_at is not None and self.started_at < cutoff

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job": self.job,
            "run_key": self.run_key,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "summary": self.summary,
        }


@dataclass(slots=True)
class AutomationRule:
    """Per-tenant enablement and config for one job."""

    tenant_id: str
    job: str
    is_enabled: bool
    config: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    last_run_at: datetime | None = None
    deleted_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "job": self.job,
            "is_enabled": self.is_enabled,
            "config": self.config,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


@dataclass(slots=True)
class Tenant:
    id: str
    name: str | None
    status: str
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_active(self) -> bool:
        return not self.is_deleted and self.status == "active"


@dataclass(slots=True)
class Contact:
    id: str | None
    full_name: str | None = None
    phone: str | None = None
    email: str | None = None

    def display_name(self, fallback: str) -> str:
        return self.full_name or self.email or self.phone or fallback


@dataclass(slots=True)
class Occupancy:
    """Active PG bed occupancy that owes monthly rent."""

    id: str
    tenant_id: str
    contact_id: str | None
    monthly_rent: Decimal | None
    contact: Contact | None = None


@dataclass(slots=True)
class Appointment:
    id: str
    tenant_id: str
    contact_id: str | None
    scheduled_at: datetime
    status: str
    contact: Contact | None = None


@dataclass(slots=True)
class Lead:
    id: str
    tenant_id: str | None
    contact_id: str | None
    source: str | None = None
    campaign: str | None = None


@dataclass(slots=True)
class MessageTemplate:
    key: str
    channel: str
    body: str
    subject: str | None = None


@dataclass(slots=True)
class OutboxDraft:
    """Values for a new message_outbox row."""

    tenant_id: str
    channel: str
    idempotency_key: str
    body: str
    scheduled_at: datetime
    subject: str | None = None
    contact_id: str | None = None
    to_phone: str | None = None
    to_email: str | None = None
    template_key: str | None = None
    related_table: str | None = None
    related_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    status: str = OUTBOX_QUEUED


@dataclass(slots=True)
class OutboxMessage:
    """Represents a message_outbox row."""

    id: str
    tenant_id: str
    channel: str
    status: str
    scheduled_at: datetime
    idempotency_key: str
    body: str
    subject: str | None = None
    contact_id: str | None = None
    to_phone: str | None = None
    to_email: str | None = None
    template_key: str | None = None
    related_table: str | None = None
    related_id: str | None = None
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("scheduled_at", "created_at", "updated_at", "deleted_at"):
            value = data.get(key)
            data[key] = value.isoformat() if value else None
        return data


@dataclass(slots=True)
class DueDraft:
    """Values for a new pg_payments due row."""

    tenant_id: str
    occupancy_id: str
    contact_id: str | None
    period_start: date
    period_end: date
    due_date: date
    amount_due: Decimal
    amount_paid: Decimal = Decimal("0")
    status: str = "due"
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DueCreationResult:
    """Outcome of the atomic due + outbox create-or-return-existing unit."""

    due_id: str
    outbox_id: str | None
    due_created: bool
    outbox_created: bool
