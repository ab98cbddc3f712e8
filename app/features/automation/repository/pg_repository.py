"""
Postgres repository for PG (paying guest) occupancies and rent dues.

The due row and its outbox message are written in one transaction so a
retry can never leave a due without its message.
"""

from collections.abc import Sequence
from datetime import date

from app.db.helpers import fetch_all, fetch_one, jsonb
from app.db.pool import db_pool
from app.features.automation.domain import DueCreationResult, DueDraft, Occupancy, OutboxDraft
from app.features.automation.repository.contacts import CONTACT_JOIN_COLUMNS, contact_from_row
from app.features.automation.repository.outbox_repository import OutboxRepository


class PgRepository:
    async def list_active_occupancies(self, tenant_id: str) -> list[Occupancy]:
        query = f"""
            SELECT
                o.id,
                o.tenant_id,
                o.contact_id,
                o.monthly_rent,
                {CONTACT_JOIN_COLUMNS}
            FROM pg_occupancies o
            LEFT JOIN contacts c ON c.id = o.contact_id
            WHERE o.tenant_id = %s
              AND o.status = 'active'
              AND o.deleted_at IS NULL
            ORDER BY o.created_at ASC
        """
        rows = await fetch_all(query, (tenant_id,))
        return [
            Occupancy(
                id=str(row["id"]),
                tenant_id=str(row["tenant_id"]),
                contact_id=str(row["contact_id"]) if row.get("contact_id") else None,
                monthly_rent=row.get("monthly_rent"),
                contact=contact_from_row(row),
            )
            for row in rows
        ]

    async def existing_due_occupancies(
        self, tenant_id: str, period_start: date, occupancy_ids: Sequence[str]
    ) -> set[str]:
        """Occupancy ids that already have a live due for ``period_start``."""
        if not occupancy_ids:
            return set()
        rows = await fetch_all(
            """
            SELECT occupancy_id
            FROM pg_payments
            WHERE tenant_id = %s
              AND period_start = %s
              AND deleted_at IS NULL
              AND occupancy_id = ANY(%s)
            """,
            (tenant_id, period_start, list(occupancy_ids)),
        )
        return {str(row["occupancy_id"]) for row in rows}

    async def create_due_with_outbox(
        self, due: DueDraft, outbox: OutboxDraft
    ) -> DueCreationResult:
        """
        Create the due and its reminder message, or return the existing ones.

        ``xmax = 0`` distinguishes a fresh insert from the no-op update used
        to make ON CONFLICT return the existing row id.
        """
        due_query = """
            INSERT INTO pg_payments (
                tenant_id, occupancy_id, contact_id, period_start, period_end,
                due_date, amount_due, amount_paid, status, metadata
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (tenant_id, occupancy_id, period_start)
            WHERE deleted_at IS NULL
              AND occupancy_id IS NOT NULL
              AND period_start IS NOT NULL
            DO UPDATE SET updated_at = pg_payments.updated_at
            RETURNING id, (xmax = 0) AS created
        """
        outbox_query = f"""
            INSERT INTO message_outbox ({OutboxRepository.INSERT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (tenant_id, idempotency_key) WHERE deleted_at IS NULL
            DO UPDATE SET updated_at = message_outbox.updated_at
            RETURNING id, (xmax = 0) AS created
        """

        async with db_pool.transaction() as conn:
            due_row = await fetch_one(
                due_query,
                (
                    due.tenant_id,
                    due.occupancy_id,
                    due.contact_id,
                    due.period_start,
                    due.period_end,
                    due.due_date,
                    due.amount_due,
                    due.amount_paid,
                    due.status,
                    jsonb(due.meta),
                ),
                connection=conn,
            )
            due_id = str(due_row["id"])

            outbox.related_table = "pg_payments"
            outbox.related_id = due_id
            outbox_row = await fetch_one(
                outbox_query, OutboxRepository.draft_params(outbox), connection=conn
            )

        return DueCreationResult(
            due_id=due_id,
            outbox_id=str(outbox_row["id"]) if outbox_row else None,
            due_created=bool(due_row["created"]),
            outbox_created=bool(outbox_row and outbox_row["created"]),
        )


pg_repository = PgRepository()
