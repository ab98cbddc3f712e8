"""
Shared run loop for multi-tenant automation jobs.

A job invocation:
    1. derives the period run key from the clock,
    2. claims the period through JobLock (skipped for dry runs),
    3. walks the enabled rules, filtering tenants through eligibility,
    4. lets the concrete job generate work for each eligible tenant,
    5. finalizes the ledger row with the summary.

Errors for one tenant or one item are recorded in the summary and the loop
moves on; anything escaping the loop fails the whole run. Work already
committed stays committed, the next run picks up where this one stopped
because every insert is idempotent.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import structlog

from app.features.automation.domain import AutomationRule, Tenant
from app.features.automation.services.eligibility import TenantEligibilityFilter
from app.features.automation.services.job_lock import JobLock
from app.infrastructure.observability.logging import get_logger, log_job_result

logger = get_logger(__name__)

# Ledger metadata carried from a recovered or re-run row into the new summary
CARRIED_SUMMARY_KEYS = ("note", "auto_recovered_at", "rerun_count", "last_rerun_at")

SCHEDULER_ERROR_BACKOFF_SECONDS = 60


class JobSummary:
    """Counters and errors for one job invocation."""

    COUNTERS: tuple[str, ...] = ()

    def __init__(self, preview_limit: int = 25):
        self.preview_limit = preview_limit
        self.reset()

    def reset(self):
        self.tenants_processed = 0
        self.tenants_skipped = 0
        for name in self.COUNTERS:
            setattr(self, name, 0)
        self.errors: list[str] = []
        self.preview: list[dict[str, Any]] = []

    def record_tenant_skipped(self, tenant_id: str, reason: str | None):
        self.tenants_skipped += 1
        logger.debug("Tenant skipped", tenant_id=tenant_id, reason=reason)

    def record_error(self, kind: str, ref: str, error: Exception | str):
        message = f"{kind} for {ref}: {error}"
        self.errors.append(message)
        logger.warning("Automation item failed", kind=kind, ref=ref, error=str(error))

    def add_preview(self, item: dict[str, Any]):
        if len(self.preview) < self.preview_limit:
            self.preview.append(item)

    def to_dict(self, *, dry_run: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tenants_processed": self.tenants_processed,
            "tenants_skipped": self.tenants_skipped,
        }
        for name in self.COUNTERS:
            data[name] = getattr(self, name)
        data["errors"] = list(self.errors)
        if dry_run:
            data["dry_run"] = True
            data["preview"] = list(self.preview)
        return data


class AutomationJob:
    """
    Base class for a periodic job over every tenant with an enabled rule.

    Subclasses set ``job_name``, ``feature_key`` and ``summary_class`` and
    implement ``build_run_key`` and ``process_tenant``.
    """

    job_name: str = ""
    feature_key: str = ""
    summary_class: type[JobSummary] = JobSummary
    # Label for errors raised while loading or processing one tenant's work
    tenant_error_kind: str = "Tenant"

    def __init__(self, ctx):
        self.ctx = ctx
        self.lock = JobLock(ctx.runs, stale_after=ctx.stale_after, clock=ctx.clock)
        self.eligibility = TenantEligibilityFilter(ctx.tenants, self.feature_key)

    def build_run_key(self, now: datetime) -> str:
        raise NotImplementedError

    async def process_tenant(
        self,
        rule: AutomationRule,
        tenant: Tenant,
        now: datetime,
        summary: JobSummary,
        *,
        dry: bool,
    ) -> None:
        raise NotImplementedError

    async def run_once(self, *, force: bool = False, dry: bool = False) -> dict[str, Any]:
        """
        Run the job for the current period.

        Returns one of:
            {"ok": True, "run_key": ..., "summary": {...}}
            {"ok": True, "skipped": True, "run_key": ..., "status": ...}
            {"ok": False, "run_key": ..., "error": ...}
        """
        now = self.ctx.clock()
        run_key = self.build_run_key(now)

        with structlog.contextvars.bound_contextvars(job=self.job_name, run_key=run_key):
            if dry:
                return await self._run_dry(now, run_key)
            return await self._run_locked(now, run_key, force=force)

    async def _run_dry(self, now: datetime, run_key: str) -> dict[str, Any]:
        summary = self.summary_class(preview_limit=self.ctx.preview_limit)
        try:
            await self._process_rules(now, summary, dry=True)
        except Exception as e:
            logger.error("Dry run failed", error=str(e), error_type=type(e).__name__)
            return {"ok": False, "run_key": run_key, "error": str(e)}

        return {"ok": True, "run_key": run_key, "summary": summary.to_dict(dry_run=True)}

    async def _run_locked(self, now: datetime, run_key: str, *, force: bool) -> dict[str, Any]:
        try:
            decision = await self.lock.acquire(self.job_name, run_key, force=force)
        except Exception as e:
            return {"ok": False, "run_key": run_key, "error": str(e)}

        if not decision.granted:
            return {"ok": True, "skipped": True, "run_key": run_key, "status": decision.status}

        carried = {
            key: decision.summary[key] for key in CARRIED_SUMMARY_KEYS if key in decision.summary
        }
        summary = self.summary_class(preview_limit=self.ctx.preview_limit)

        logger.info("Starting automation job", force=force)
        try:
            await self._process_rules(now, summary, dry=False)
            final = {**carried, **summary.to_dict()}
            await self.lock.release(self.job_name, run_key, succeeded=True, summary=final)
        except Exception as e:
            logger.error("Automation job failed", error=str(e), error_type=type(e).__name__)
            failure = {**carried, **summary.to_dict(), "error": str(e)}
            try:
                await self.lock.release(self.job_name, run_key, succeeded=False, summary=failure)
            except Exception as release_error:
                # Row stays running; the staleness window recovers it
                logger.error("Failed to finalize job run", error=str(release_error))
            return {"ok": False, "run_key": run_key, "error": str(e)}

        return {"ok": True, "run_key": run_key, "summary": final}

    async def _process_rules(self, now: datetime, summary: JobSummary, *, dry: bool) -> None:
        rules = await self.ctx.rules.list_enabled(self.job_name)

        for rule in rules:
            try:
                eligibility = await self.eligibility.check(rule)
            except Exception as e:
                summary.record_error("Tenant", rule.tenant_id, e)
                continue

            if not eligibility.eligible:
                summary.record_tenant_skipped(rule.tenant_id, eligibility.reason)
                continue

            summary.tenants_processed += 1
            try:
                await self.process_tenant(rule, eligibility.tenant, now, summary, dry=dry)
                if not dry:
                    await self.ctx.rules.touch_last_run(rule.tenant_id, self.job_name, now)
            except Exception as e:
                summary.record_error(self.tenant_error_kind, rule.tenant_id, e)


async def run_scheduler_loop(
    job_name: str,
    run_job: Callable[[], Awaitable[dict[str, Any]]],
    interval_minutes: int,
) -> None:
    """
    Call ``run_job`` every ``interval_minutes`` until cancelled.

    The database pool is opened lazily so a worker started before the
    database is reachable keeps retrying instead of exiting.
    """
    from app.db.pool import db_pool

    logger.info("Starting automation job scheduler", job=job_name, interval_minutes=interval_minutes)

    try:
        while True:
            try:
                if not db_pool.is_ready:
                    await db_pool.initialize()

                result = await run_job()
                log_job_result(job_name, result)

                await asyncio.sleep(interval_minutes * 60)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error in automation job scheduler",
                    job=job_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(SCHEDULER_ERROR_BACKOFF_SECONDS)
    finally:
        await db_pool.close()
