"""
Postgres repository for the job_runs ledger.

job_runs has a unique index on (job, run_key). Every state change here is a
single conditional statement so concurrent invocations race inside Postgres,
never between a read and a write in Python.
"""

from datetime import datetime
from typing import Any

from app.db.helpers import execute_query, fetch_all, fetch_one, jsonb
from app.features.automation.domain import JobRun
from app.features.automation.domain.models import RUN_FAILED, RUN_RUNNING
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class JobRunRepository:
    """Persistence helpers for the run ledger."""

    SELECT_COLUMNS = "id, job, run_key, status, started_at, finished_at, summary"

    @staticmethod
    def _row_to_run(row: dict | None) -> JobRun | None:
        if not row:
            return None

        return JobRun(
            id=str(row["id"]),
            job=row["job"],
            run_key=row["run_key"],
            status=row["status"],
            started_at=row["started_at"],
            finished_at=row.get("finished_at"),
            summary=dict(row.get("summary") or {}),
        )

    async def claim(self, job: str, run_key: str, started_at: datetime) -> JobRun | None:
        """
        Insert a running row for (job, run_key).

        Returns the new row, or None when a row for the key already exists.
        """
        query = f"""
            INSERT INTO job_runs (job, run_key, status, started_at, summary)
            VALUES (%s, %s, 'running', %s, '{{}}'::jsonb)
            ON CONFLICT (job, run_key) DO NOTHING
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (job, run_key, started_at))
        return self._row_to_run(row)

    async def get(self, job: str, run_key: str) -> JobRun | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM job_runs
            WHERE job = %s AND run_key = %s
        """
        row = await fetch_one(query, (job, run_key))
        return self._row_to_run(row)

    async def mark_stale_failed(
        self,
        job: str,
        run_key: str,
        stale_before: datetime,
        finished_at: datetime,
        summary: dict[str, Any],
    ) -> bool:
        """Fail the row only if it is still running and started before ``stale_before``."""
        query = """
            UPDATE job_runs
            SET status = 'failed',
                finished_at = %s,
                summary = %s
            WHERE job = %s
              AND run_key = %s
              AND status = 'running'
              AND started_at < %s
        """
        affected = await execute_query(
            query, (finished_at, jsonb(summary), job, run_key, stale_before)
        )
        if affected:
            logger.warning("Stale job run recovered", job=job, run_key=run_key)
        return affected > 0

    async def reopen(
        self, job: str, run_key: str, started_at: datetime, summary: dict[str, Any]
    ) -> bool:
        """Move a finished row back to running. No-op while another attempt is live."""
        query = """
            UPDATE job_runs
            SET status = 'running',
                started_at = %s,
                finished_at = NULL,
                summary = %s
            WHERE job = %s
              AND run_key = %s
              AND status <> 'running'
        """
        affected = await execute_query(query, (started_at, jsonb(summary), job, run_key))
        return affected > 0

    async def finish(
        self,
        job: str,
        run_key: str,
        status: str,
        finished_at: datetime,
        summary: dict[str, Any],
    ) -> None:
        if status == RUN_RUNNING:
            raise ValueError("finish() requires a terminal status")

        query = """
            UPDATE job_runs
            SET status = %s,
                finished_at = %s,
                summary = %s
            WHERE job = %s AND run_key = %s
        """
        await execute_query(query, (status, finished_at, jsonb(summary), job, run_key))
        if status == RUN_FAILED:
            logger.warning("Job run finished as failed", job=job, run_key=run_key)

    async def list_recent(self, job: str, limit: int = 20) -> list[JobRun]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM job_runs
            WHERE job = %s
            ORDER BY started_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (job, limit))
        return [self._row_to_run(row) for row in rows]


job_run_repository = JobRunRepository()
