"""
Outbox queue operations used by the admin console and delivery workers.

Every operation is scoped to one tenant and ignores soft-deleted rows, so a
message id from another tenant behaves exactly like an unknown id.
"""

import re
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import quote

from app.features.automation.domain.models import (
    CHANNEL_SMS,
    CHANNEL_WHATSAPP,
    OUTBOX_CANCELLED,
    OUTBOX_FAILED,
    OUTBOX_PROCESSING,
    OUTBOX_QUEUED,
    OUTBOX_SENT,
    OutboxMessage,
    allowed_sources,
    can_transition,
    utc_now,
)
from app.features.automation.errors import OutboxMessageNotFoundError, OutboxTransitionError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

WHATSAPP_BASE_URL = "https://wa.me/"
MANUAL_SEND_CHANNELS = frozenset({CHANNEL_WHATSAPP, CHANNEL_SMS})


def clean_phone(phone: str | None) -> str:
    """Digits only, the form wa.me expects."""
    return re.sub(r"\D", "", phone or "")


def build_whatsapp_link(phone: str | None, text: str | None = None) -> str | None:
    digits = clean_phone(phone)
    if not digits:
        return None
    url = f"{WHATSAPP_BASE_URL}{digits}"
    if text:
        url += f"?text={quote(text, safe='')}"
    return url


class OutboxService:
    def __init__(self, outbox, clock: Callable[[], datetime] = utc_now):
        self.outbox = outbox
        self.clock = clock

    async def list_messages(
        self,
        tenant_id: str,
        *,
        status: str | None = None,
        channel: str | None = None,
        limit: int = 200,
    ) -> list[OutboxMessage]:
        return await self.outbox.list_messages(
            tenant_id, status=status, channel=channel, limit=limit
        )

    async def get_message(self, tenant_id: str, message_id: str) -> OutboxMessage:
        message = await self.outbox.get(tenant_id, message_id)
        if message is None:
            raise OutboxMessageNotFoundError(tenant_id, message_id)
        return message

    async def mark_processing(self, tenant_id: str, message_id: str) -> OutboxMessage:
        return await self._transition(tenant_id, message_id, OUTBOX_PROCESSING)

    async def mark_sent(self, tenant_id: str, message_id: str) -> OutboxMessage:
        return await self._transition(tenant_id, message_id, OUTBOX_SENT)

    async def mark_failed(self, tenant_id: str, message_id: str, error: str) -> OutboxMessage:
        return await self._transition(
            tenant_id, message_id, OUTBOX_FAILED, error=error, set_error=True
        )

    async def cancel(self, tenant_id: str, message_id: str) -> OutboxMessage:
        return await self._transition(tenant_id, message_id, OUTBOX_CANCELLED)

    async def retry(self, tenant_id: str, message_id: str) -> OutboxMessage:
        """Requeue a sent, failed or cancelled message and clear its error."""
        return await self._transition(
            tenant_id, message_id, OUTBOX_QUEUED, error=None, set_error=True
        )

    async def record_manual_send(self, tenant_id: str, message_id: str) -> dict[str, Any]:
        """
        Record that an operator opened the manual send link for a message.

        Status is left alone; the operator confirms delivery with mark_sent.

        Returns:
            dict with ``url`` (None when no deep link applies) and ``message``
        """
        message = await self.get_message(tenant_id, message_id)

        url = None
        if message.channel in MANUAL_SEND_CHANNELS:
            url = build_whatsapp_link(message.to_phone, message.body)

        patch = {
            "manual_send_opened_at": self.clock().isoformat(),
            "manual_send_url": url,
            "manual_send_count": int(message.meta.get("manual_send_count") or 0) + 1,
        }
        updated = await self.outbox.merge_meta(tenant_id, message_id, patch)
        if updated is None:
            raise OutboxMessageNotFoundError(tenant_id, message_id)

        logger.info(
            "Manual send recorded",
            tenant_id=tenant_id,
            outbox_id=message_id,
            channel=message.channel,
            has_link=url is not None,
        )
        return {"url": url, "message": updated}

    async def _transition(
        self,
        tenant_id: str,
        message_id: str,
        target: str,
        *,
        error: str | None = None,
        set_error: bool = False,
    ) -> OutboxMessage:
        current = await self.get_message(tenant_id, message_id)
        if not can_transition(current.status, target):
            raise OutboxTransitionError(message_id, current.status, target)

        updated = await self.outbox.transition(
            tenant_id,
            message_id,
            to_status=target,
            from_statuses=allowed_sources(target),
            error=error,
            set_error=set_error,
        )
        if updated is None:
            # Row changed between the read and the conditional update
            latest = await self.get_message(tenant_id, message_id)
            raise OutboxTransitionError(message_id, latest.status, target)

        logger.info(
            "Outbox status changed",
            tenant_id=tenant_id,
            outbox_id=message_id,
            from_status=current.status,
            to_status=target,
        )
        return updated
