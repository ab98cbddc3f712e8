"""
Postgres repository for automation_rules.

One live rule per (tenant_id, job); rows are soft-deleted, never removed.
"""

from datetime import datetime
from typing import Any

from app.db.helpers import execute_query, fetch_all, fetch_one, jsonb
from app.features.automation.domain import AutomationRule
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AutomationRuleRepository:
    SELECT_COLUMNS = "id, tenant_id, job, is_enabled, config, last_run_at, deleted_at"

    @staticmethod
    def _row_to_rule(row: dict | None) -> AutomationRule | None:
        if not row:
            return None

        # jsonb accepts scalars and arrays; anything but an object reads as empty
        config = row.get("config")

        return AutomationRule(
            id=str(row["id"]) if row.get("id") else None,
            tenant_id=str(row["tenant_id"]),
            job=row["job"],
            is_enabled=bool(row["is_enabled"]),
            config=dict(config) if isinstance(config, dict) else {},
            last_run_at=row.get("last_run_at"),
            deleted_at=row.get("deleted_at"),
        )

    async def list_enabled(self, job: str) -> list[AutomationRule]:
        """Enabled, non-deleted rules for ``job`` in creation order."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM automation_rules
            WHERE job = %s
              AND is_enabled = true
              AND deleted_at IS NULL
            ORDER BY created_at ASC
        """
        rows = await fetch_all(query, (job,))
        return [self._row_to_rule(row) for row in rows]

    async def touch_last_run(self, tenant_id: str, job: str, at: datetime) -> None:
        query = """
            UPDATE automation_rules
            SET last_run_at = %s
            WHERE tenant_id = %s AND job = %s AND deleted_at IS NULL
        """
        await execute_query(query, (at, tenant_id, job))

    async def upsert(
        self, tenant_id: str, job: str, is_enabled: bool, config: dict[str, Any]
    ) -> AutomationRule:
        """Create or update the live rule for (tenant_id, job)."""
        query = f"""
            INSERT INTO automation_rules (tenant_id, job, is_enabled, config)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (tenant_id, job) WHERE deleted_at IS NULL
            DO UPDATE SET
                is_enabled = EXCLUDED.is_enabled,
                config = EXCLUDED.config
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (tenant_id, job, is_enabled, jsonb(config)))
        logger.info(
            "Automation rule saved", tenant_id=tenant_id, job=job, is_enabled=is_enabled
        )
        return self._row_to_rule(row)


automation_rule_repository = AutomationRuleRepository()
