"""Pydantic schemas for webhook management endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID
from pydantic import BaseModel, Field
from app.models.webhook import WebhookLogStatus


class WebhookCreate(BaseModel):
    """Request schema for registering a webhook subscription."""
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    events: list[str] | None = None  # defaults to every available event


class WebhookUpdate(BaseModel):
    """Partial update; only provided fields are changed."""
    name: str | None = None
    url: str | None = None
    events: list[str] | None = None
    is_active: bool | None = None
    regenerate_secret: bool = False


class WebhookTestRequest(BaseModel):
    """Probe either a registered webhook or a raw URL."""
    webhook_id: UUID | None = None
    url: str | None = None


class WebhookTriggerRequest(BaseModel):
    event_type: str
    # Open map: each event type carries its own data shape
    event_data: dict[str, Any]


class WebhookLogOut(BaseModel):
    id: UUID
    webhook_id: UUID | None = None
    event_type: str
    payload: dict[str, Any]
    status: WebhookLogStatus
    status_code: int | None = None
    response: str | None = None
    error: str | None = None
    attempts: int
    created_at: datetime | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class WebhookOut(BaseModel):
    """Webhook subscription. `secret` is masked except right after create/regenerate."""
    id: UUID
    name: str
    url: str
    secret: str
    events: list[str]
    is_active: bool
    failure_count: int
    last_triggered_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    logs: list[WebhookLogOut] | None = None


class WebhookStats(BaseModel):
    total: int
    active: int
    pending: int
    success: int
    failed: int
    retrying: int


class WebhookList(BaseModel):
    success: bool = True
    webhooks: list[WebhookOut]
    stats: WebhookStats
    available_events: list[str]


class WebhookResponse(BaseModel):
    success: bool = True
    webhook: WebhookOut
    message: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class DeliveryResult(BaseModel):
    """Outcome of one delivery attempt to one subscription."""
    webhook_id: UUID
    success: bool
    status_code: int | None = None
    error: str | None = None


class WebhookTriggerResponse(BaseModel):
    success: bool = True
    message: str
    results: list[DeliveryResult]


class WebhookTestResult(BaseModel):
    success: bool
    status_code: int | None = None
    message: str
    response: str | None = None
