"""
Request/response models for the automation and outbox routers.
"""

from typing import Any

from pydantic import BaseModel, Field


class LeadInstantMessageRequest(BaseModel):
    lead_id: str | None = None
    force: bool = False


class AutomationRuleUpdate(BaseModel):
    is_enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class MarkFailedRequest(BaseModel):
    error: str = Field(..., min_length=1, max_length=2000)


class OutboxMessageResponse(BaseModel):
    id: str
    tenant_id: str
    channel: str
    status: str
    scheduled_at: str | None = None
    idempotency_key: str
    body: str
    subject: str | None = None
    contact_id: str | None = None
    to_phone: str | None = None
    to_email: str | None = None
    template_key: str | None = None
    related_table: str | None = None
    related_id: str | None = None
    error: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None


class OutboxListResponse(BaseModel):
    messages: list[OutboxMessageResponse]
    count: int


class ManualSendResponse(BaseModel):
    url: str | None = None
    message: OutboxMessageResponse
