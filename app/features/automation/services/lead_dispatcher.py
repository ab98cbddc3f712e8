"""
Instant WhatsApp acknowledgement for newly captured leads.

Called synchronously by lead capture. At most one live acknowledgement
exists per lead (idempotency key ``lead_instant:<lead_id>``); ``force``
soft-deletes the previous one and queues a fresh message in the same
transaction.
"""

from dataclasses import dataclass
from typing import Any

from app.features.automation.domain import OutboxDraft
from app.features.automation.domain.models import CHANNEL_WHATSAPP
from app.features.automation.errors import DuplicateOutboxMessageError, LeadNotFoundError
from app.features.automation.services.template_renderer import render, render_optional
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LEAD_INSTANT_JOB = "lead_instant_message"
LEAD_INSTANT_TEMPLATE_KEY = "lead_instant_ack"
FALLBACK_TEMPLATE = (
    "Hi {{full_name}}, thanks for your enquiry! We'll contact you shortly. "
    "If you want a quick reply, reply with your preferred time."
)

SKIP_MISSING_CONTACT = "missing_contact"
SKIP_MISSING_PHONE = "missing_phone"
SKIP_ALREADY_EXISTS = "already_exists"


def lead_idempotency_key(lead_id: str) -> str:
    return f"lead_instant:{lead_id}"


@dataclass(slots=True)
class DispatchResult:
    created: bool
    outbox_id: str | None = None
    skipped_reason: str | None = None
    webhook_sent: bool | None = None
    webhook_error: str | None = None

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {
            "ok": True,
            "created_outbox": self.created,
            "outbox_id": self.outbox_id,
            "skipped_reason": self.skipped_reason,
        }
        if self.created:
            response["webhook_sent"] = bool(self.webhook_sent)
            response["webhook_error"] = self.webhook_error
        return response


class LeadInstantMessageDispatcher:
    def __init__(self, ctx):
        self.ctx = ctx

    async def dispatch(self, lead_id: str, *, force: bool = False) -> DispatchResult:
        """
        Queue the acknowledgement for ``lead_id`` and notify the sender webhook.

        Raises:
            LeadNotFoundError: no lead with this id
        """
        ctx = self.ctx
        lead = await ctx.leads.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)

        if not lead.tenant_id or not lead.contact_id:
            return DispatchResult(created=False, skipped_reason=SKIP_MISSING_CONTACT)

        tenant_id = lead.tenant_id
        contact = await ctx.leads.get_contact(tenant_id, lead.contact_id)
        if contact is None:
            return DispatchResult(created=False, skipped_reason=SKIP_MISSING_CONTACT)
        if not contact.phone:
            return DispatchResult(created=False, skipped_reason=SKIP_MISSING_PHONE)

        tenant = await ctx.tenants.get_tenant(tenant_id)
        tenant_name = tenant.name if tenant else None
        tenant_phone = await ctx.tenants.get_contact_phone(tenant_id)
        template = await ctx.tenants.get_active_template(
            tenant_id, LEAD_INSTANT_TEMPLATE_KEY, CHANNEL_WHATSAPP
        )

        variables = {
            "full_name": contact.full_name or contact.email or "there",
            "tenant_name": tenant_name or "",
            "source": lead.source or "",
            "campaign": lead.campaign or "",
        }
        template_key = template.key if template else LEAD_INSTANT_TEMPLATE_KEY
        body = render(template.body if template else FALLBACK_TEMPLATE, variables)
        subject = render_optional(template.subject if template else None, variables)

        key = lead_idempotency_key(lead_id)
        existing = await ctx.outbox.get_by_key(tenant_id, key)
        if existing is not None and not force:
            return DispatchResult(
                created=False, outbox_id=existing.id, skipped_reason=SKIP_ALREADY_EXISTS
            )

        draft = OutboxDraft(
            tenant_id=tenant_id,
            channel=CHANNEL_WHATSAPP,
            idempotency_key=key,
            body=body,
            subject=subject,
            scheduled_at=ctx.clock(),
            contact_id=lead.contact_id,
            to_phone=contact.phone,
            to_email=contact.email,
            template_key=template_key,
            related_table="leads",
            related_id=lead_id,
            meta={
                "job": LEAD_INSTANT_JOB,
                "source": "lead_capture",
                "template_key": template_key,
                "tenant_name": tenant_name,
                "tenant_phone": tenant_phone,
            },
        )
        try:
            if existing is not None:
                message = await ctx.outbox.replace(tenant_id, existing.id, draft, ctx.clock())
                logger.info(
                    "Previous lead acknowledgement replaced",
                    lead_id=lead_id,
                    tenant_id=tenant_id,
                    outbox_id=existing.id,
                )
            else:
                message = await ctx.outbox.insert(draft)
        except DuplicateOutboxMessageError:
            # A concurrent request queued the same key first
            winner = await ctx.outbox.get_by_key(tenant_id, key)
            return DispatchResult(
                created=False,
                outbox_id=winner.id if winner else None,
                skipped_reason=SKIP_ALREADY_EXISTS,
            )

        webhook_sent, webhook_error = await ctx.webhook.relay([message.id])

        logger.info(
            "Lead acknowledgement queued",
            lead_id=lead_id,
            tenant_id=tenant_id,
            outbox_id=message.id,
            webhook_sent=webhook_sent,
            webhook_error=webhook_error,
        )
        return DispatchResult(
            created=True,
            outbox_id=message.id,
            webhook_sent=webhook_sent,
            webhook_error=webhook_error,
        )
