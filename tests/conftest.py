import asyncio
import itertools
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from app.auth.verify import require_service_role
from app.features.automation.context import AutomationContext
from app.features.automation.domain import (
    Appointment,
    AutomationRule,
    Contact,
    DueCreationResult,
    JobRun,
    Lead,
    MessageTemplate,
    Occupancy,
    OutboxMessage,
    Tenant,
)
from app.features.automation.domain.models import RUN_RUNNING
from app.features.automation.errors import DuplicateOutboxMessageError

FIXED_NOW = datetime(2024, 5, 10, 9, 30, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class InMemoryJobRuns:
    """job_runs with the same conditional semantics as the SQL statements."""

    def __init__(self):
        self.rows: dict[tuple[str, str], JobRun] = {}
        self._ids = itertools.count(1)

    def _copy(self, row: JobRun | None) -> JobRun | None:
        return replace(row, summary=dict(row.summary)) if row else None

    async def claim(self, job, run_key, started_at):
        await asyncio.sleep(0)
        if (job, run_key) in self.rows:
            return None
        row = JobRun(
            id=f"run-{next(self._ids)}",
            job=job,
            run_key=run_key,
            status=RUN_RUNNING,
            started_at=started_at,
        )
        self.rows[(job, run_key)] = row
        return self._copy(row)

    async def get(self, job, run_key):
        await asyncio.sleep(0)
        return self._copy(self.rows.get((job, run_key)))

    async def mark_stale_failed(self, job, run_key, stale_before, finished_at, summary):
        await asyncio.sleep(0)
        row = self.rows.get((job, run_key))
        if not row or row.status != RUN_RUNNING or not row.started_at < stale_before:
            return False
        row.status = "failed"
        row.finished_at = finished_at
        row.summary = dict(summary)
        return True

    async def reopen(self, job, run_key, started_at, summary):
        await asyncio.sleep(0)
        row = self.rows.get((job, run_key))
        if not row or row.status == RUN_RUNNING:
            return False
        row.status = RUN_RUNNING
        row.started_at = started_at
        row.finished_at = None
        row.summary = dict(summary)
        return True

    async def finish(self, job, run_key, status, finished_at, summary):
        await asyncio.sleep(0)
        row = self.rows[(job, run_key)]
        row.status = status
        row.finished_at = finished_at
        row.summary = dict(summary)

    async def list_recent(self, job, limit=20):
        rows = [row for (name, _), row in self.rows.items() if name == job]
        rows.sort(key=lambda row: row.started_at, reverse=True)
        return [self._copy(row) for row in rows[:limit]]

    def insert(self, job, run_key, status, started_at, summary=None):
        """Seed a ledger row directly."""
        self.rows[(job, run_key)] = JobRun(
            id=f"run-{next(self._ids)}",
            job=job,
            run_key=run_key,
            status=status,
            started_at=started_at,
            summary=dict(summary or {}),
        )
        return self.rows[(job, run_key)]


class InMemoryRules:
    def __init__(self):
        self.rules: list[AutomationRule] = []
        self.fail_list = False

    async def list_enabled(self, job):
        if self.fail_list:
            raise RuntimeError("rules unavailable")
        return [
            replace(rule, config=dict(rule.config) if isinstance(rule.config, dict) else rule.config)
            for rule in self.rules
            if rule.job == job and rule.is_enabled and rule.deleted_at is None
        ]

    def _find(self, tenant_id, job):
        for rule in self.rules:
            if rule.tenant_id == tenant_id and rule.job == job and rule.deleted_at is None:
                return rule
        return None

    async def touch_last_run(self, tenant_id, job, at):
        rule = self._find(tenant_id, job)
        if rule:
            rule.last_run_at = at

    async def upsert(self, tenant_id, job, is_enabled, config):
        rule = self._find(tenant_id, job)
        if rule is None:
            rule = AutomationRule(
                id=f"rule-{len(self.rules) + 1}", tenant_id=tenant_id, job=job, is_enabled=is_enabled
            )
            self.rules.append(rule)
        rule.is_enabled = is_enabled
        rule.config = dict(config)
        return rule


class InMemoryTenants:
    def __init__(self):
        self.tenants: dict[str, Tenant] = {}
        self.features: set[tuple[str, str]] = set()
        self.contact_phones: dict[str, str] = {}
        self.templates: dict[tuple[str, str, str], MessageTemplate] = {}
        self.broken: set[str] = set()

    async def get_tenant(self, tenant_id):
        if tenant_id in self.broken:
            raise RuntimeError("tenant lookup failed")
        return self.tenants.get(tenant_id)

    async def is_feature_enabled(self, tenant_id, feature_key):
        return (tenant_id, feature_key) in self.features

    async def get_contact_phone(self, tenant_id):
        return self.contact_phones.get(tenant_id)

    async def get_active_template(self, tenant_id, key, channel):
        return self.templates.get((tenant_id, key, channel))


class InMemoryOutbox:
    """message_outbox with the partial unique index on live idempotency keys."""

    def __init__(self, clock):
        self.clock = clock
        self.messages: dict[str, OutboxMessage] = {}
        self.fail_keys: set[str] = set()
        self._ids = itertools.count(1)

    def _live(self, tenant_id, key):
        for message in self.messages.values():
            if (
                message.tenant_id == tenant_id
                and message.idempotency_key == key
                and message.deleted_at is None
            ):
                return message
        return None

    def _copy(self, message):
        return replace(message, meta=dict(message.meta)) if message else None

    def _create(self, draft) -> OutboxMessage:
        now = self.clock()
        message = OutboxMessage(
            id=f"msg-{next(self._ids)}",
            tenant_id=draft.tenant_id,
            channel=draft.channel,
            status=draft.status,
            scheduled_at=draft.scheduled_at,
            idempotency_key=draft.idempotency_key,
            body=draft.body,
            subject=draft.subject,
            contact_id=draft.contact_id,
            to_phone=draft.to_phone,
            to_email=draft.to_email,
            template_key=draft.template_key,
            related_table=draft.related_table,
            related_id=draft.related_id,
            meta=dict(draft.meta),
            created_at=now,
            updated_at=now,
        )
        self.messages[message.id] = message
        return message

    async def insert(self, draft):
        await asyncio.sleep(0)
        if draft.idempotency_key in self.fail_keys:
            raise RuntimeError("insert failed")
        if self._live(draft.tenant_id, draft.idempotency_key):
            raise DuplicateOutboxMessageError(draft.tenant_id, draft.idempotency_key)
        return self._copy(self._create(draft))

    async def existing_keys(self, tenant_id, keys):
        return {key for key in keys if self._live(tenant_id, key)}

    async def get_by_key(self, tenant_id, idempotency_key):
        return self._copy(self._live(tenant_id, idempotency_key))

    async def get(self, tenant_id, message_id, *, include_deleted=False):
        message = self.messages.get(message_id)
        if not message or message.tenant_id != tenant_id:
            return None
        if message.deleted_at is not None and not include_deleted:
            return None
        return self._copy(message)

    async def list_messages(
        self, tenant_id, *, status=None, channel=None, limit=200, include_deleted=False
    ):
        rows = [
            message
            for message in self.messages.values()
            if message.tenant_id == tenant_id
            and (include_deleted or message.deleted_at is None)
            and (status is None or message.status == status)
            and (channel is None or message.channel == channel)
        ]
        rows.sort(key=lambda message: int(message.id.split("-")[1]), reverse=True)
        return [self._copy(message) for message in rows[: max(1, min(limit, 200))]]

    async def transition(
        self, tenant_id, message_id, *, to_status, from_statuses, error=None, set_error=False
    ):
        await asyncio.sleep(0)
        message = self.messages.get(message_id)
        if (
            not message
            or message.tenant_id != tenant_id
            or message.deleted_at is not None
            or message.status not in set(from_statuses)
        ):
            return None
        message.status = to_status
        if set_error:
            message.error = error
        message.updated_at = self.clock()
        return self._copy(message)

    async def merge_meta(self, tenant_id, message_id, patch):
        message = self.messages.get(message_id)
        if not message or message.tenant_id != tenant_id or message.deleted_at is not None:
            return None
        message.meta.update(patch)
        message.updated_at = self.clock()
        return self._copy(message)

    async def soft_delete(self, tenant_id, message_id, at):
        message = self.messages.get(message_id)
        if not message or message.tenant_id != tenant_id or message.deleted_at is not None:
            return False
        message.deleted_at = at
        message.updated_at = at
        return True

    async def replace(self, tenant_id, message_id, draft, at):
        """soft_delete + insert; a failed insert rolls the delete back."""
        previous = self.messages.get(message_id)
        snapshot = (previous.deleted_at, previous.updated_at) if previous else None
        await self.soft_delete(tenant_id, message_id, at)
        try:
            return await self.insert(draft)
        except Exception:
            if previous is not None:
                previous.deleted_at, previous.updated_at = snapshot
            raise

    def live_messages(self, tenant_id=None):
        return [
            message
            for message in self.messages.values()
            if message.deleted_at is None and (tenant_id is None or message.tenant_id == tenant_id)
        ]


class InMemoryPg:
    """pg_occupancies + pg_payments; due and outbox are created in one step."""

    def __init__(self, outbox: InMemoryOutbox):
        self.outbox = outbox
        self.occupancies: list[Occupancy] = []
        self.payments: dict[tuple[str, str, object], dict] = {}
        self.fail_occupancies: set[str] = set()
        self.broken_tenants: set[str] = set()

    async def list_active_occupancies(self, tenant_id):
        if tenant_id in self.broken_tenants:
            raise RuntimeError("occupancy query failed")
        return [occupancy for occupancy in self.occupancies if occupancy.tenant_id == tenant_id]

    async def existing_due_occupancies(self, tenant_id, period_start, occupancy_ids):
        return {
            occupancy_id
            for occupancy_id in occupancy_ids
            if (tenant_id, occupancy_id, period_start) in self.payments
        }

    async def create_due_with_outbox(self, due, outbox):
        await asyncio.sleep(0)
        if due.occupancy_id in self.fail_occupancies:
            raise RuntimeError("payment insert failed")

        key = (due.tenant_id, due.occupancy_id, due.period_start)
        due_created = key not in self.payments
        if due_created:
            self.payments[key] = {
                "id": f"pay-{len(self.payments) + 1}",
                "amount_due": due.amount_due,
                "amount_paid": due.amount_paid,
                "status": due.status,
                "due_date": due.due_date,
                "period_end": due.period_end,
                "meta": dict(due.meta),
            }
        due_id = self.payments[key]["id"]

        outbox.related_table = "pg_payments"
        outbox.related_id = due_id
        existing = self.outbox._live(outbox.tenant_id, outbox.idempotency_key)
        if existing:
            return DueCreationResult(due_id, existing.id, due_created, False)
        message = self.outbox._create(outbox)
        return DueCreationResult(due_id, message.id, due_created, True)


class InMemoryClinic:
    def __init__(self):
        self.appointments: list[Appointment] = []

    async def list_upcoming_appointments(self, tenant_id, window_start, window_end):
        rows = [
            appointment
            for appointment in self.appointments
            if appointment.tenant_id == tenant_id
            and appointment.status in ("scheduled", "confirmed")
            and window_start <= appointment.scheduled_at <= window_end
        ]
        return sorted(rows, key=lambda appointment: appointment.scheduled_at)


class InMemoryLeads:
    def __init__(self):
        self.leads: dict[str, Lead] = {}
        self.contacts: dict[tuple[str, str], Contact] = {}

    async def get_lead(self, lead_id):
        return self.leads.get(lead_id)

    async def get_contact(self, tenant_id, contact_id):
        return self.contacts.get((tenant_id, contact_id))


class FakeWebhook:
    def __init__(self, result=(True, None)):
        self.result = result
        self.calls: list[list[str]] = []

    async def relay(self, outbox_ids):
        self.calls.append(list(outbox_ids))
        return self.result


class InMemoryStore:
    """All fakes plus seed helpers; ``context()`` wires them like production."""

    def __init__(self):
        self.clock = FakeClock()
        self.runs = InMemoryJobRuns()
        self.rules = InMemoryRules()
        self.tenants = InMemoryTenants()
        self.outbox = InMemoryOutbox(self.clock)
        self.pg = InMemoryPg(self.outbox)
        self.clinic = InMemoryClinic()
        self.leads = InMemoryLeads()
        self.webhook = FakeWebhook()
        self._ids = itertools.count(1)

    def context(self, **overrides) -> AutomationContext:
        values = {
            "runs": self.runs,
            "rules": self.rules,
            "tenants": self.tenants,
            "outbox": self.outbox,
            "pg": self.pg,
            "clinic": self.clinic,
            "leads": self.leads,
            "webhook": self.webhook,
            "stale_after": timedelta(minutes=30),
            "preview_limit": 25,
            "clock": self.clock,
        }
        values.update(overrides)
        return AutomationContext(**values)

    def add_tenant(self, tenant_id, *, name="Acme", status="active", deleted=False, features=()):
        self.tenants.tenants[tenant_id] = Tenant(
            id=tenant_id,
            name=name,
            status=status,
            deleted_at=self.clock() if deleted else None,
        )
        for feature in features:
            self.tenants.features.add((tenant_id, feature))
        return self.tenants.tenants[tenant_id]

    def add_rule(self, tenant_id, job, *, config=None, enabled=True):
        rule = AutomationRule(
            id=f"rule-{next(self._ids)}",
            tenant_id=tenant_id,
            job=job,
            is_enabled=enabled,
            config=dict(config or {}),
        )
        self.rules.rules.append(rule)
        return rule

    def add_template(self, tenant_id, key, channel, body, subject=None):
        self.tenants.templates[(tenant_id, key, channel)] = MessageTemplate(
            key=key, channel=channel, body=body, subject=subject
        )

    def add_occupancy(self, tenant_id, rent, *, full_name="Asha", phone="+91 98450 00000", email=None):
        n = next(self._ids)
        contact = Contact(id=f"contact-{n}", full_name=full_name, phone=phone, email=email)
        occupancy = Occupancy(
            id=f"occ-{n}",
            tenant_id=tenant_id,
            contact_id=contact.id,
            monthly_rent=None if rent is None else Decimal(str(rent)),
            contact=contact,
        )
        self.pg.occupancies.append(occupancy)
        return occupancy

    def add_appointment(
        self, tenant_id, scheduled_at, *, status="scheduled", full_name="Ravi", phone=None
    ):
        n = next(self._ids)
        contact = Contact(id=f"contact-{n}", full_name=full_name, phone=phone)
        appointment = Appointment(
            id=f"appt-{n}",
            tenant_id=tenant_id,
            contact_id=contact.id,
            scheduled_at=scheduled_at,
            status=status,
            contact=contact,
        )
        self.clinic.appointments.append(appointment)
        return appointment

    def add_lead(
        self,
        tenant_id,
        *,
        full_name="Meera",
        phone="+91 90000 11111",
        email=None,
        source="landing",
        campaign=None,
        with_contact=True,
    ):
        n = next(self._ids)
        contact_id = f"contact-{n}"
        if with_contact:
            self.leads.contacts[(tenant_id, contact_id)] = Contact(
                id=contact_id, full_name=full_name, phone=phone, email=email
            )
        lead = Lead(
            id=f"lead-{n}",
            tenant_id=tenant_id,
            contact_id=contact_id,
            source=source,
            campaign=campaign,
        )
        self.leads.leads[lead.id] = lead
        return lead


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def auth_override():
    def _override():
        return {"role": "service_role"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[require_service_role] = auth_override

    return _apply
