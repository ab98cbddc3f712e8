"""
Postgres repository for message_outbox.

Duplicate prevention relies on the partial unique index
(tenant_id, idempotency_key) WHERE deleted_at IS NULL. ``insert`` surfaces
the conflict as DuplicateOutboxMessageError; the due path in pg_repository
resolves it with its own ON CONFLICT clause.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

import psycopg

from app.db.helpers import UniqueViolationError, execute_query, fetch_all, fetch_one, jsonb
from app.db.pool import db_pool
from app.features.automation.domain import OutboxDraft, OutboxMessage
from app.features.automation.errors import DuplicateOutboxMessageError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_LIST_LIMIT = 200


class OutboxRepository:
    SELECT_COLUMNS = """
        id, tenant_id, channel, status, scheduled_at, idempotency_key, body, subject,
        contact_id, to_phone, to_email, template_key, related_table, related_id,
        error, meta, created_at, updated_at, deleted_at
    """

    INSERT_COLUMNS = """
        tenant_id, channel, status, scheduled_at, contact_id, to_phone, to_email,
        template_key, subject, body, related_table, related_id, idempotency_key, meta
    """

    @staticmethod
    def _row_to_message(row: dict | None) -> OutboxMessage | None:
        if not row:
            return None

        def _opt(key: str) -> str | None:
            value = row.get(key)
            return str(value) if value is not None else None

        meta = row.get("meta")

        return OutboxMessage(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            channel=row["channel"],
            status=row["status"],
            scheduled_at=row["scheduled_at"],
            idempotency_key=row["idempotency_key"],
            body=row["body"],
            subject=row.get("subject"),
            contact_id=_opt("contact_id"),
            to_phone=row.get("to_phone"),
            to_email=row.get("to_email"),
            template_key=row.get("template_key"),
            related_table=row.get("related_table"),
            related_id=_opt("related_id"),
            error=row.get("error"),
            meta=dict(meta) if isinstance(meta, dict) else {},
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            deleted_at=row.get("deleted_at"),
        )

    @staticmethod
    def draft_params(draft: OutboxDraft) -> tuple:
        return (
            draft.tenant_id,
            draft.channel,
            draft.status,
            draft.scheduled_at,
            draft.contact_id,
            draft.to_phone,
            draft.to_email,
            draft.template_key,
            draft.subject,
            draft.body,
            draft.related_table,
            draft.related_id,
            draft.idempotency_key,
            jsonb(draft.meta),
        )

    async def insert(
        self, draft: OutboxDraft, *, connection: psycopg.AsyncConnection | None = None
    ) -> OutboxMessage:
        """Plain insert; a live row with the same key raises DuplicateOutboxMessageError."""
        query = f"""
            INSERT INTO message_outbox ({self.INSERT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        try:
            row = await fetch_one(query, self.draft_params(draft), connection=connection)
        except UniqueViolationError as e:
            raise DuplicateOutboxMessageError(draft.tenant_id, draft.idempotency_key) from e

        logger.debug(
            "Outbox message queued",
            tenant_id=draft.tenant_id,
            idempotency_key=draft.idempotency_key,
            channel=draft.channel,
        )
        return self._row_to_message(row)

    async def replace(
        self, tenant_id: str, message_id: str, draft: OutboxDraft, at: datetime
    ) -> OutboxMessage:
        """
        Soft-delete ``message_id`` and insert ``draft`` in one transaction.

        If the insert fails the delete is rolled back, so the previous message
        stays live.
        """
        async with db_pool.transaction() as conn:
            await self.soft_delete(tenant_id, message_id, at, connection=conn)
            return await self.insert(draft, connection=conn)

    async def existing_keys(self, tenant_id: str, keys: Sequence[str]) -> set[str]:
        if not keys:
            return set()
        rows = await fetch_all(
            """
            SELECT idempotency_key
            FROM message_outbox
            WHERE tenant_id = %s
              AND deleted_at IS NULL
              AND idempotency_key = ANY(%s)
            """,
            (tenant_id, list(keys)),
        )
        return {row["idempotency_key"] for row in rows}

    async def get_by_key(self, tenant_id: str, idempotency_key: str) -> OutboxMessage | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM message_outbox
            WHERE tenant_id = %s AND idempotency_key = %s AND deleted_at IS NULL
        """
        row = await fetch_one(query, (tenant_id, idempotency_key))
        return self._row_to_message(row)

    async def get(
        self, tenant_id: str, message_id: str, *, include_deleted: bool = False
    ) -> OutboxMessage | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM message_outbox
            WHERE tenant_id = %s AND id = %s
        """
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        row = await fetch_one(query, (tenant_id, message_id))
        return self._row_to_message(row)

    async def list_messages(
        self,
        tenant_id: str,
        *,
        status: str | None = None,
        channel: str | None = None,
        limit: int = MAX_LIST_LIMIT,
        include_deleted: bool = False,
    ) -> list[OutboxMessage]:
        clauses = ["tenant_id = %s"]
        params: list[Any] = [tenant_id]
        if not include_deleted:
            clauses.append("deleted_at IS NULL")
        if status:
            clauses.append("status = %s")
            params.append(status)
        if channel:
            clauses.append("channel = %s")
            params.append(channel)
        params.append(max(1, min(limit, MAX_LIST_LIMIT)))

        where = " AND ".join(clauses)
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM message_outbox
            WHERE {where}
            ORDER BY created_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, tuple(params))
        return [self._row_to_message(row) for row in rows]

    async def transition(
        self,
        tenant_id: str,
        message_id: str,
        *,
        to_status: str,
        from_statuses: Iterable[str],
        error: str | None = None,
        set_error: bool = False,
    ) -> OutboxMessage | None:
        """
        Conditionally change status. Returns None when the row is missing or
        its current status is not in ``from_statuses``.
        """
        query = f"""
            UPDATE message_outbox
            SET status = %s,
                error = CASE WHEN %s::boolean THEN %s::text ELSE error END,
                updated_at = NOW()
            WHERE tenant_id = %s
              AND id = %s
              AND deleted_at IS NULL
              AND status = ANY(%s)
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (to_status, set_error, error, tenant_id, message_id, list(from_statuses)),
        )
        return self._row_to_message(row)

    async def merge_meta(
        self, tenant_id: str, message_id: str, patch: dict[str, Any]
    ) -> OutboxMessage | None:
        query = f"""
            UPDATE message_outbox
            SET meta = COALESCE(meta, '{{}}'::jsonb) || %s,
                updated_at = NOW()
            WHERE tenant_id = %s AND id = %s AND deleted_at IS NULL
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (jsonb(patch), tenant_id, message_id))
        return self._row_to_message(row)

    async def soft_delete(
        self,
        tenant_id: str,
        message_id: str,
        at: datetime,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> bool:
        affected = await execute_query(
            """
            UPDATE message_outbox
            SET deleted_at = %s, updated_at = %s
            WHERE tenant_id = %s AND id = %s AND deleted_at IS NULL
            """,
            (at, at, tenant_id, message_id),
            connection=connection,
        )
        return affected > 0


outbox_repository = OutboxRepository()
