"""
Relay of freshly queued outbox ids to the external sender webhook.

The webhook (an automation platform scenario) pulls the rows itself; we only
tell it which ids are new. Failures are reported to the caller, never raised.
"""

import httpx

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

NOT_CONFIGURED_ERROR = "Webhook env not configured"
REQUEST_FAILED_ERROR = "Webhook request failed"


class OutboxWebhookRelay:
    def __init__(
        self,
        url: str | None,
        secret: str | None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url and self.secret)

    async def relay(self, outbox_ids: list[str]) -> tuple[bool, str | None]:
        """
        POST ``{secret, outbox_ids}`` to the webhook.

        Returns:
            (sent, error) where error is None on a 2xx response
        """
        if not self.configured:
            return False, NOT_CONFIGURED_ERROR

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    self.url, json={"secret": self.secret, "outbox_ids": outbox_ids}
                )
        except httpx.HTTPError as e:
            logger.warning(
                "Outbox webhook request failed",
                error=str(e),
                error_type=type(e).__name__,
                outbox_ids=outbox_ids,
            )
            return False, REQUEST_FAILED_ERROR

        if not response.is_success:
            logger.warning(
                "Outbox webhook rejected relay",
                status_code=response.status_code,
                outbox_ids=outbox_ids,
            )
            return False, f"Webhook failed ({response.status_code})"

        logger.info("Outbox ids relayed to webhook", count=len(outbox_ids))
        return True, None
