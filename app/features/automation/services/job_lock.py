"""
Run lock on top of the job_runs ledger.

A (job, run_key) pair identifies one period of work. ``acquire`` decides
whether the caller may execute that period; ``release`` records the outcome.
All decisions are made by conditional statements in the repository, so two
invocations racing for the same key can never both be granted.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from app.features.automation.domain.models import RUN_FAILED, RUN_RUNNING, RUN_SUCCESS, utc_now
from app.features.automation.errors import JobLockError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STUCK_RUN_NOTE = "auto_recovered_stuck_run"


@dataclass(slots=True)
class LockDecision:
    granted: bool
    status: str | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    recovered: bool = False


class JobLock:
    """Admission control for job periods."""

    def __init__(
        self,
        runs,
        stale_after: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.runs = runs
        self.stale_after = stale_after
        self.clock = clock

    async def acquire(self, job: str, run_key: str, *, force: bool = False) -> LockDecision:
        """
        Try to start ``job`` for ``run_key``.

        Without ``force`` any existing row (running, success or failed)
        rejects the attempt. With ``force`` a finished row is reopened, but a
        live running row is never taken over.
        """
        now = self.clock()
        try:
            claimed = await self.runs.claim(job, run_key, now)
            if claimed is not None:
                logger.info("Job run claimed", job=job, run_key=run_key)
                return LockDecision(granted=True, status=RUN_RUNNING)

            existing = await self.runs.get(job, run_key)
            if existing is None:
                # Row vanished between claim and read; treat as contention
                return LockDecision(granted=False, status=None)

            recovered = False
            if existing.is_stale(now - self.stale_after):
                summary = {
                    **existing.summary,
                    "note": STUCK_RUN_NOTE,
                    "auto_recovered_at": now.isoformat(),
                }
                recovered = await self.runs.mark_stale_failed(
                    job, run_key, now - self.stale_after, now, summary
                )
                if recovered:
                    existing.status = RUN_FAILED
                    existing.summary = summary
                else:
                    # Someone else moved the row first; re-read its real state
                    existing = await self.runs.get(job, run_key) or existing

            if not force or existing.is_running:
                logger.info(
                    "Job run rejected",
                    job=job,
                    run_key=run_key,
                    status=existing.status,
                    force=force,
                    recovered=recovered,
                )
                return LockDecision(
                    granted=False,
                    status=existing.status,
                    summary=existing.summary,
                    recovered=recovered,
                )

            rerun_summary = {
                **existing.summary,
                "rerun_count": int(existing.summary.get("rerun_count") or 0) + 1,
                "last_rerun_at": now.isoformat(),
            }
            reopened = await self.runs.reopen(job, run_key, now, rerun_summary)
            if not reopened:
                logger.info("Forced rerun lost the race", job=job, run_key=run_key)
                return LockDecision(granted=False, status=RUN_RUNNING, recovered=recovered)

            logger.info(
                "Job run reopened",
                job=job,
                run_key=run_key,
                previous_status=existing.status,
                rerun_count=rerun_summary["rerun_count"],
            )
            return LockDecision(
                granted=True, status=RUN_RUNNING, summary=rerun_summary, recovered=recovered
            )

        except Exception as e:
            logger.error("Job lock acquisition failed", job=job, run_key=run_key, error=str(e))
            raise JobLockError(f"Failed to acquire lock for {run_key}: {e}", operation="acquire") from e

    async def release(
        self, job: str, run_key: str, *, succeeded: bool, summary: dict[str, Any]
    ) -> None:
        status = RUN_SUCCESS if succeeded else RUN_FAILED
        await self.runs.finish(job, run_key, status, self.clock(), summary)
