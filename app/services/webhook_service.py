"""Webhook subscription registry.

CRUD over webhook subscriptions plus the read-side queries the admin
dashboard needs (recent delivery logs, status counts).
"""

import logging
from typing import Iterable, Optional
from uuid import UUID

import httpx
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, ValidationError
from app.models.webhook import AVAILABLE_EVENTS, Webhook, WebhookLog, WebhookLogStatus
from app.services.webhook_signature import generate_webhook_secret

logger = logging.getLogger(__name__)


def validate_url(url: str) -> str:
    """Require an absolute http(s) URL."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        raise ValidationError("Invalid webhook URL")
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValidationError("Invalid webhook URL")
    return url


def validate_events(events: Iterable[str]) -> list[str]:
    events = list(events)
    invalid = [e for e in events if e not in AVAILABLE_EVENTS]
    if invalid:
        raise ValidationError(f"Invalid events: {', '.join(invalid)}")
    return events


def validate_event_type(event_type: str) -> str:
    if event_type not in AVAILABLE_EVENTS:
        raise ValidationError(f"Invalid event type: {event_type}")
    return event_type


async def create_webhook(
    db: AsyncSession,
    name: str,
    url: str,
    events: Optional[list[str]] = None,
) -> Webhook:
    """Register a subscription with a freshly generated secret.

    The returned object carries the plaintext secret; callers must show it
    once and never again.
    """
    if not name or not url:
        raise ValidationError("Name and URL are required")

    validate_url(url)
    selected = validate_events(events) if events is not None else list(AVAILABLE_EVENTS)

    webhook = Webhook(
        name=name,
        url=url,
        secret=generate_webhook_secret(),
        events=selected,
        is_active=True,
        failure_count=0,
    )
    db.add(webhook)
    await db.commit()
    await db.refresh(webhook)

    logger.info("Webhook created: id=%s name=%s events=%d", webhook.id, name, len(selected))
    return webhook


async def get_webhook(db: AsyncSession, webhook_id: UUID) -> Webhook:
    result = await db.execute(select(Webhook).where(Webhook.id == webhook_id))
    webhook = result.scalar_one_or_none()
    if webhook is None:
        raise NotFoundError("Webhook not found")
    return webhook


async def list_webhooks(db: AsyncSession, include_inactive: bool = False) -> list[Webhook]:
    """Subscriptions, newest first; active only unless include_inactive."""
    query = select(Webhook).order_by(Webhook.created_at.desc())
    if not include_inactive:
        query = query.where(Webhook.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_recent_logs(db: AsyncSession, webhook_id: UUID, limit: int = 10) -> list[WebhookLog]:
    result = await db.execute(
        select(WebhookLog)
        .where(WebhookLog.webhook_id == webhook_id)
        .order_by(WebhookLog.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_log_stats(db: AsyncSession) -> dict[str, int]:
    """Count of delivery log rows per status across all subscriptions."""
    result = await db.execute(
        select(WebhookLog.status, func.count(WebhookLog.id)).group_by(WebhookLog.status)
    )
    counts = {status.value: 0 for status in WebhookLogStatus}
    for status, count in result.all():
        key = status.value if isinstance(status, WebhookLogStatus) else str(status)
        counts[key] = count
    return counts


async def count_webhooks(db: AsyncSession) -> tuple[int, int]:
    """Return (total, active) subscription counts."""
    total = (await db.execute(select(func.count(Webhook.id)))).scalar_one()
    active = (
        await db.execute(select(func.count(Webhook.id)).where(Webhook.is_active.is_(True)))
    ).scalar_one()
    return total, active


async def update_webhook(
    db: AsyncSession,
    webhook_id: UUID,
    name: Optional[str] = None,
    url: Optional[str] = None,
    events: Optional[list[str]] = None,
    is_active: Optional[bool] = None,
    regenerate_secret: bool = False,
) -> Webhook:
    """Partial update. Validation runs before anything is written."""
    webhook = await get_webhook(db, webhook_id)

    if url is not None:
        validate_url(url)
    if events is not None:
        validate_events(events)

    if name is not None:
        webhook.name = name
    if url is not None:
        webhook.url = url
    if events is not None:
        webhook.events = list(events)
    if is_active is not None:
        webhook.is_active = is_active
    if regenerate_secret:
        # One-way overwrite; deliveries already in flight keep the old secret
        webhook.secret = generate_webhook_secret()

    await db.commit()
    await db.refresh(webhook)

    logger.info(
        "Webhook updated: id=%s active=%s secret_regenerated=%s",
        webhook.id,
        webhook.is_active,
        regenerate_secret,
    )
    return webhook


async def delete_webhook(db: AsyncSession, webhook_id: UUID) -> None:
    """Delete a subscription together with all of its delivery logs."""
    await get_webhook(db, webhook_id)

    # Explicit delete so SQLite (no FK enforcement by default) cascades too
    await db.execute(delete(WebhookLog).where(WebhookLog.webhook_id == webhook_id))
    await db.execute(delete(Webhook).where(Webhook.id == webhook_id))
    await db.commit()

    logger.info("Webhook deleted: id=%s", webhook_id)
