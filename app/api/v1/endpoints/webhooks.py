"""Admin webhook management endpoints.

Thin HTTP layer: registry logic lives in app.services.webhook_service,
delivery in app.services.webhook_dispatcher.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.deps import require_admin
from app.models.webhook import AVAILABLE_EVENTS, Webhook
from app.schemas.webhook import (
    MessageResponse,
    WebhookCreate,
    WebhookList,
    WebhookLogOut,
    WebhookOut,
    WebhookResponse,
    WebhookStats,
    WebhookTestRequest,
    WebhookTestResult,
    WebhookTriggerRequest,
    WebhookTriggerResponse,
    WebhookUpdate,
)
from app.services import webhook_service
from app.services.webhook_dispatcher import manual_trigger, send_test_webhook
from app.services.webhook_signature import MASKED_SECRET

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


def _webhook_out(webhook: Webhook, reveal_secret: bool = False, logs=None) -> WebhookOut:
    return WebhookOut(
        id=webhook.id,
        name=webhook.name,
        url=webhook.url,
        secret=webhook.secret if reveal_secret else MASKED_SECRET,
        events=list(webhook.events or []),
        is_active=webhook.is_active,
        failure_count=webhook.failure_count,
        last_triggered_at=webhook.last_triggered_at,
        created_at=webhook.created_at,
        updated_at=webhook.updated_at,
        logs=[WebhookLogOut.model_validate(log) for log in logs] if logs is not None else None,
    )


@router.get("/", response_model=WebhookList)
async def list_webhooks(
    include_inactive: bool = Query(False),
    include_logs: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """List subscriptions (secrets masked) with delivery status counts."""
    webhooks = await webhook_service.list_webhooks(db, include_inactive=include_inactive)

    items = []
    for webhook in webhooks:
        logs = None
        if include_logs:
            logs = await webhook_service.get_recent_logs(db, webhook.id, settings.WEBHOOK_RECENT_LOGS)
        items.append(_webhook_out(webhook, logs=logs))

    counts = await webhook_service.get_log_stats(db)
    total, active = await webhook_service.count_webhooks(db)

    return WebhookList(
        webhooks=items,
        stats=WebhookStats(
            total=total,
            active=active,
            pending=counts["PENDING"],
            success=counts["SUCCESS"],
            failed=counts["FAILED"],
            retrying=counts["RETRYING"],
        ),
        available_events=AVAILABLE_EVENTS,
    )


@router.post("/", response_model=WebhookResponse, status_code=201)
async def create_webhook(body: WebhookCreate, db: AsyncSession = Depends(get_db)):
    """Register a webhook. The secret is returned here and never again."""
    webhook = await webhook_service.create_webhook(db, body.name, body.url, body.events)
    return WebhookResponse(
        webhook=_webhook_out(webhook, reveal_secret=True),
        message="Webhook created successfully. Save your secret - it will not be shown again.",
    )


@router.post("/test", response_model=WebhookTestResult)
async def send_test(body: WebhookTestRequest, db: AsyncSession = Depends(get_db)):
    """Probe a registered webhook or a raw URL with a synthetic event."""
    return await send_test_webhook(db, webhook_id=body.webhook_id, url=body.url)


@router.post("/trigger", response_model=WebhookTriggerResponse)
async def trigger(body: WebhookTriggerRequest, db: AsyncSession = Depends(get_db)):
    """Fire an event by hand. Per-webhook failures are reported in `results`."""
    results = await manual_trigger(db, body.event_type, body.event_data)
    return WebhookTriggerResponse(
        message=f"Webhook triggered for {body.event_type}",
        results=results,
    )


@router.get("/{webhook_id}", response_model=WebhookOut)
async def get_webhook(webhook_id: UUID, db: AsyncSession = Depends(get_db)):
    webhook = await webhook_service.get_webhook(db, webhook_id)
    return _webhook_out(webhook)


@router.get("/{webhook_id}/logs", response_model=list[WebhookLogOut])
async def get_webhook_logs(
    webhook_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Delivery log of one webhook, newest first."""
    await webhook_service.get_webhook(db, webhook_id)
    logs = await webhook_service.get_recent_logs(db, webhook_id, limit)
    return [WebhookLogOut.model_validate(log) for log in logs]


@router.put("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: UUID,
    body: WebhookUpdate,
    db: AsyncSession = Depends(get_db),
):
    webhook = await webhook_service.update_webhook(
        db,
        webhook_id,
        name=body.name,
        url=body.url,
        events=body.events,
        is_active=body.is_active,
        regenerate_secret=body.regenerate_secret,
    )
    return WebhookResponse(
        webhook=_webhook_out(webhook, reveal_secret=body.regenerate_secret),
        message=(
            "Webhook updated with new secret. Save your secret - it will not be shown again."
            if body.regenerate_secret
            else "Webhook updated successfully"
        ),
    )


@router.delete("/{webhook_id}", response_model=MessageResponse)
async def delete_webhook(webhook_id: UUID, db: AsyncSession = Depends(get_db)):
    """Delete a webhook and its delivery logs."""
    await webhook_service.delete_webhook(db, webhook_id)
    return MessageResponse(message="Webhook deleted successfully")
