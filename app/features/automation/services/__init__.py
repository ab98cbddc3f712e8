from .eligibility import EligibilityResult, TenantEligibilityFilter
from .job_lock import JobLock, LockDecision
from .lead_dispatcher import DispatchResult, LeadInstantMessageDispatcher
from .outbox_service import OutboxService, build_whatsapp_link
from .template_renderer import render, render_optional
from .webhook_relay import OutboxWebhookRelay

__all__ = [
    "DispatchResult",
    "EligibilityResult",
    "JobLock",
    "LeadInstantMessageDispatcher",
    "LockDecision",
    "OutboxService",
    "OutboxWebhookRelay",
    "TenantEligibilityFilter",
    "build_whatsapp_link",
    "render",
    "render_optional",
]
