import asyncio
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from app.features.automation.jobs.pg_monthly_dues_job import (
    PgMonthlyDuesJob,
    billable_rent,
    month_period,
)

JOB = "pg_monthly_dues"
RUN_KEY = "pg_monthly_dues:2024-05-01"


def _seed_tenant(store, tenant_id="tenant-1", **rule_config):
    store.add_tenant(tenant_id, features=["pg.payments"])
    store.add_rule(tenant_id, JOB, config=rule_config)


def test_month_period_handles_month_lengths():
    assert month_period(datetime(2024, 2, 14, tzinfo=UTC)) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_period(datetime(2024, 12, 31, 23, tzinfo=UTC)) == (
        date(2024, 12, 1),
        date(2024, 12, 31),
    )


@pytest.mark.parametrize("value", [None, 0, -10, "abc", True])
def test_billable_rent_rejects_non_positive_values(value):
    assert billable_rent(value) is None


def test_billable_rent_accepts_numbers():
    assert billable_rent(Decimal("5000")) == Decimal("5000")
    assert billable_rent(7500.5) == Decimal("7500.5")


@pytest.mark.asyncio
async def test_first_run_creates_due_and_outbox(store):
    """One active occupancy with rent 5000 and due_day 5 in May."""
    _seed_tenant(store, due_day=5)
    occupancy = store.add_occupancy("tenant-1", 5000, full_name="Asha")

    result = await PgMonthlyDuesJob(store.context()).run_once()

    assert result["ok"] is True
    assert result["run_key"] == RUN_KEY
    summary = result["summary"]
    assert summary["tenants_processed"] == 1
    assert summary["dues_created"] == 1
    assert summary["outbox_created"] == 1
    assert summary["errors"] == []

    payment = store.pg.payments[("tenant-1", occupancy.id, date(2024, 5, 1))]
    assert payment["amount_due"] == Decimal("5000")
    assert payment["amount_paid"] == Decimal("0")
    assert payment["status"] == "due"
    assert payment["due_date"] == date(2024, 5, 5)
    assert payment["period_end"] == date(2024, 5, 31)
    assert payment["meta"] == {"generated_by": "automation", "job": JOB}

    [message] = store.outbox.live_messages("tenant-1")
    assert message.idempotency_key == f"pg_due:{occupancy.id}:2024-05-01"
    assert message.channel == "internal"
    assert message.status == "queued"
    assert message.related_table == "pg_payments"
    assert message.related_id == payment["id"]
    assert message.body == "Rent due for Asha (2024-05-01) amount 5000.00."
    assert message.meta == {"job": JOB, "occupancy_id": occupancy.id, "period_start": "2024-05-01"}

    row = store.runs.rows[(JOB, RUN_KEY)]
    assert row.status == "success"
    assert row.summary["dues_created"] == 1


@pytest.mark.asyncio
async def test_rerun_for_same_month_is_idempotent(store):
    _seed_tenant(store)
    store.add_occupancy("tenant-1", 5000)
    job = PgMonthlyDuesJob(store.context())
    await job.run_once()

    skipped = await job.run_once()
    forced = await job.run_once(force=True)

    assert skipped == {"ok": True, "skipped": True, "run_key": RUN_KEY, "status": "success"}
    assert forced["ok"] is True
    assert forced["summary"]["dues_created"] == 0
    assert forced["summary"]["dues_skipped"] == 1
    assert forced["summary"]["outbox_skipped"] == 1
    assert forced["summary"]["rerun_count"] == 1
    assert len(store.pg.payments) == 1
    assert len(store.outbox.live_messages()) == 1


@pytest.mark.asyncio
async def test_zero_and_missing_rent_are_counted_separately(store):
    _seed_tenant(store)
    store.add_occupancy("tenant-1", 0)
    store.add_occupancy("tenant-1", None)
    store.add_occupancy("tenant-1", 6200)

    result = await PgMonthlyDuesJob(store.context()).run_once()

    summary = result["summary"]
    assert summary["occupancies_without_rent"] == 2
    assert summary["dues_created"] == 1
    assert summary["dues_skipped"] == 0
    assert summary["errors"] == []


@pytest.mark.asyncio
async def test_due_day_is_clamped(store):
    _seed_tenant(store, due_day=31)
    occupancy = store.add_occupancy("tenant-1", 4000)

    await PgMonthlyDuesJob(store.context()).run_once()

    assert store.pg.payments[("tenant-1", occupancy.id, date(2024, 5, 1))]["due_date"] == date(
        2024, 5, 28
    )


@pytest.mark.asyncio
async def test_tenant_template_and_contact_fallback(store):
    _seed_tenant(store)
    store.add_template(
        "tenant-1",
        "pg_due_reminder",
        "internal",
        body="{{name}} owes {{amount_due}} by {{due_date}} ({{period_start}}..{{period_end}})",
        subject="Rent {{period_start}}",
    )
    store.add_occupancy("tenant-1", 4500, full_name=None, phone=None, email=None)

    await PgMonthlyDuesJob(store.context()).run_once()

    [message] = store.outbox.live_messages()
    assert message.body == "resident owes 4500.00 by 2024-05-05 (2024-05-01..2024-05-31)"
    assert message.subject == "Rent 2024-05-01"
    assert message.template_key == "pg_due_reminder"


@pytest.mark.asyncio
async def test_ineligible_tenants_are_skipped(store):
    store.add_tenant("inactive", status="suspended", features=["pg.payments"])
    store.add_tenant("deleted", deleted=True, features=["pg.payments"])
    store.add_tenant("no-feature")
    for tenant_id in ("inactive", "deleted", "no-feature", "missing"):
        store.add_rule(tenant_id, JOB)
        store.add_occupancy(tenant_id, 5000)

    result = await PgMonthlyDuesJob(store.context()).run_once()

    summary = result["summary"]
    assert summary["tenants_processed"] == 0
    assert summary["tenants_skipped"] == 4
    assert store.pg.payments == {}
    assert all(rule.last_run_at is None for rule in store.rules.rules)


@pytest.mark.asyncio
async def test_per_item_failure_is_recorded_and_loop_continues(store):
    _seed_tenant(store)
    failing = store.add_occupancy("tenant-1", 5000)
    store.add_occupancy("tenant-1", 5500)
    store.pg.fail_occupancies.add(failing.id)

    result = await PgMonthlyDuesJob(store.context()).run_once()

    summary = result["summary"]
    assert result["ok"] is True
    assert summary["dues_created"] == 1
    assert summary["errors"] == [f"Payment for {failing.id}: payment insert failed"]
    assert store.runs.rows[(JOB, RUN_KEY)].status == "success"


@pytest.mark.asyncio
async def test_tenant_failure_does_not_stop_other_tenants(store):
    _seed_tenant(store, "tenant-1")
    _seed_tenant(store, "tenant-2")
    store.add_occupancy("tenant-2", 5000)
    store.pg.broken_tenants.add("tenant-1")

    result = await PgMonthlyDuesJob(store.context()).run_once()

    summary = result["summary"]
    assert summary["errors"] == ["Occupancies for tenant-1: occupancy query failed"]
    assert summary["dues_created"] == 1
    last_runs = {rule.tenant_id: rule.last_run_at for rule in store.rules.rules}
    assert last_runs == {"tenant-1": None, "tenant-2": store.clock()}


@pytest.mark.asyncio
async def test_escaping_error_marks_run_failed(store):
    _seed_tenant(store)
    store.rules.fail_list = True

    result = await PgMonthlyDuesJob(store.context()).run_once()

    assert result == {"ok": False, "run_key": RUN_KEY, "error": "rules unavailable"}
    row = store.runs.rows[(JOB, RUN_KEY)]
    assert row.status == "failed"
    assert row.summary["error"] == "rules unavailable"
    assert row.finished_at == store.clock()


@pytest.mark.asyncio
async def test_dry_run_matches_real_counts_and_writes_nothing(store):
    _seed_tenant(store)
    store.add_occupancy("tenant-1", 5000)
    store.add_occupancy("tenant-1", 0)
    store.add_occupancy("tenant-1", 7000)
    job = PgMonthlyDuesJob(store.context())

    dry = await job.run_once(dry=True)

    assert dry["ok"] is True
    assert dry["summary"]["dry_run"] is True
    assert dry["summary"]["dues_created"] == 2
    assert dry["summary"]["outbox_created"] == 2
    assert dry["summary"]["occupancies_without_rent"] == 1
    assert len(dry["summary"]["preview"]) == 2
    assert dry["summary"]["preview"][0]["payment_exists"] is False
    assert store.runs.rows == {}
    assert store.pg.payments == {}
    assert store.outbox.messages == {}
    assert store.rules.rules[0].last_run_at is None

    real = await job.run_once()

    for key in ("dues_created", "dues_skipped", "outbox_created", "outbox_skipped"):
        assert real["summary"][key] == dry["summary"][key]


@pytest.mark.asyncio
async def test_dry_run_reports_existing_dues_as_skipped(store):
    _seed_tenant(store)
    store.add_occupancy("tenant-1", 5000)
    job = PgMonthlyDuesJob(store.context())
    await job.run_once()

    dry = await job.run_once(dry=True)

    assert dry["summary"]["dues_created"] == 0
    assert dry["summary"]["dues_skipped"] == 1
    assert dry["summary"]["outbox_skipped"] == 1
    assert dry["summary"]["preview"][0]["payment_exists"] is True


@pytest.mark.asyncio
async def test_dry_run_preview_is_capped(store):
    _seed_tenant(store)
    for _ in range(5):
        store.add_occupancy("tenant-1", 5000)

    result = await PgMonthlyDuesJob(store.context(preview_limit=3)).run_once(dry=True)

    assert result["summary"]["dues_created"] == 5
    assert len(result["summary"]["preview"]) == 3


@pytest.mark.asyncio
async def test_malformed_rule_config_falls_back_to_default_due_day(store):
    _seed_tenant(store, "tenant-1")
    store.rules.rules[0].config = "abc"
    _seed_tenant(store, "tenant-2", due_day=10)
    first = store.add_occupancy("tenant-1", 5000)
    second = store.add_occupancy("tenant-2", 6000)

    result = await PgMonthlyDuesJob(store.context()).run_once()

    summary = result["summary"]
    assert result["ok"] is True
    assert summary["tenants_processed"] == 2
    assert summary["dues_created"] == 2
    assert summary["errors"] == []
    may = date(2024, 5, 1)
    assert store.pg.payments[("tenant-1", first.id, may)]["due_date"] == date(2024, 5, 5)
    assert store.pg.payments[("tenant-2", second.id, may)]["due_date"] == date(2024, 5, 10)


@pytest.mark.asyncio
async def test_concurrent_runs_produce_one_winner(store):
    _seed_tenant(store)
    store.add_occupancy("tenant-1", 5000)

    results = await asyncio.gather(
        *[PgMonthlyDuesJob(store.context()).run_once() for _ in range(6)]
    )

    winners = [result for result in results if "summary" in result]
    skipped = [result for result in results if result.get("skipped")]
    assert len(winners) == 1
    assert len(skipped) == 5
    assert all(result["run_key"] == RUN_KEY for result in results)
    assert list(store.runs.rows) == [(JOB, RUN_KEY)]
    assert store.runs.rows[(JOB, RUN_KEY)].status == "success"
    assert len(store.pg.payments) == 1
    assert len(store.outbox.live_messages("tenant-1")) == 1
