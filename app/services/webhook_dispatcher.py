"""Outbound webhook delivery.

trigger_webhook() fans one event out to every active subscription that
listens to it: one signed POST per subscription, one delivery log row per
attempt, and health bookkeeping on the subscription row. Delivery failures
are recorded and reported in the results, never raised.

Delivery is attempted exactly once per trigger. There is no retry queue;
the RETRYING log status is reserved for one.
"""

import asyncio
import json
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.webhook import Webhook, WebhookLog, WebhookLogStatus
from app.schemas.webhook import DeliveryResult, WebhookTestResult
from app.services.webhook_service import get_webhook, validate_event_type, validate_url
from app.services.webhook_signature import sign_payload, sign_payload_prefixed

logger = logging.getLogger(__name__)

TEST_SECRET = "test_secret"
TEST_MESSAGE = "This is a test webhook from Refferq"


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _serialize(payload: Dict[str, Any]) -> str:
    """Canonical wire form. Sign and send this exact string."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


async def _post(
    client: httpx.AsyncClient,
    url: str,
    body: str,
    headers: Dict[str, str],
    timeout: float,
) -> tuple[Optional[httpx.Response], Optional[str]]:
    """POST once, bounded by `timeout` in total. Returns (response, error)."""
    try:
        response = await asyncio.wait_for(
            client.post(url, content=body.encode("utf-8"), headers=headers),
            timeout=timeout,
        )
        return response, None
    except asyncio.TimeoutError:
        return None, f"Request timed out after {timeout:g}s"
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return None, str(e) or e.__class__.__name__


async def _register_success(db: AsyncSession, webhook_id: UUID) -> None:
    # Success resets the health counter but never re-enables a disabled webhook
    await db.execute(
        update(Webhook)
        .where(Webhook.id == webhook_id)
        .values(failure_count=0, last_triggered_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )


async def _register_failure(db: AsyncSession, webhook_id: UUID) -> None:
    """Atomically bump failure_count; disable at the threshold in the same UPDATE."""
    threshold = settings.WEBHOOK_MAX_FAILURES
    result = await db.execute(
        update(Webhook)
        .where(Webhook.id == webhook_id)
        .values(
            failure_count=Webhook.failure_count + 1,
            is_active=case(
                (Webhook.failure_count + 1 >= threshold, False),
                else_=Webhook.is_active,
            ),
        )
        .returning(Webhook.failure_count, Webhook.is_active)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        return

    failure_count, is_active = row
    if failure_count >= threshold and not is_active:
        logger.warning(
            "Webhook auto-disabled after %d consecutive failures: id=%s",
            failure_count,
            webhook_id,
        )


async def _record_outcome(
    db: AsyncSession,
    webhook_id: UUID,
    log: WebhookLog,
    response: Optional[httpx.Response],
    error: Optional[str],
) -> DeliveryResult:
    log.completed_at = datetime.utcnow()

    if response is not None and response.is_success:
        await _register_success(db, webhook_id)
        log.status = WebhookLogStatus.SUCCESS
        log.status_code = response.status_code
        log.response = response.text[: settings.WEBHOOK_LOG_RESPONSE_CHARS]
        await db.commit()
        return DeliveryResult(webhook_id=webhook_id, success=True, status_code=response.status_code)

    await _register_failure(db, webhook_id)
    log.status = WebhookLogStatus.FAILED

    if response is not None:
        log.status_code = response.status_code
        log.error = f"HTTP {response.status_code}: {response.reason_phrase}"
        log.response = response.text[: settings.WEBHOOK_LOG_RESPONSE_CHARS]
        await db.commit()
        logger.warning("Webhook delivery failed: id=%s status=%d", webhook_id, response.status_code)
        return DeliveryResult(
            webhook_id=webhook_id,
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )

    log.error = error or "Network error"
    await db.commit()
    logger.warning("Webhook delivery failed: id=%s error=%s", webhook_id, log.error[:100])
    return DeliveryResult(webhook_id=webhook_id, success=False, error=log.error)


async def trigger_webhook(
    db: AsyncSession,
    event_type: str,
    event_data: Dict[str, Any],
) -> list[DeliveryResult]:
    """Deliver `event_type` to every active subscription listening to it.

    Assumes `event_type` is a valid tag; manual_trigger() validates for
    admin callers. Returns one DeliveryResult per matching subscription
    (empty when nobody listens).
    """
    result = await db.execute(select(Webhook).where(Webhook.is_active.is_(True)))
    subscribed = [w for w in result.scalars().all() if event_type in (w.events or [])]

    if not subscribed:
        logger.info("No active webhooks subscribed to %s", event_type)
        return []

    deliveries = []
    for webhook in subscribed:
        timestamp = _iso_now()
        body = _serialize({
            "event": event_type,
            "data": event_data,
            "timestamp": timestamp,
            "webhookId": str(webhook.id),
        })
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign_payload(body, webhook.secret),
            "X-Webhook-Event": event_type,
            "X-Webhook-Id": str(webhook.id),
            "X-Webhook-Timestamp": timestamp,
        }
        log = WebhookLog(
            webhook_id=webhook.id,
            event_type=event_type,
            payload=json.loads(body),
            status=WebhookLogStatus.PENDING,
            attempts=1,
        )
        db.add(log)
        deliveries.append((webhook.id, webhook.url, body, headers, log))

    # PENDING rows are durable before any request leaves the process
    await db.commit()

    timeout = settings.WEBHOOK_TIMEOUT_SECONDS
    async with _http_client(timeout) as client:
        outcomes = await asyncio.gather(
            *(_post(client, url, body, headers, timeout) for _, url, body, headers, _ in deliveries),
            return_exceptions=True,
        )

    results = []
    for (webhook_id, _, _, _, log), outcome in zip(deliveries, outcomes):
        if isinstance(outcome, BaseException):
            response, error = None, str(outcome) or outcome.__class__.__name__
        else:
            response, error = outcome
        results.append(await _record_outcome(db, webhook_id, log, response, error))

    succeeded = sum(1 for r in results if r.success)
    logger.info(
        "Webhook trigger complete: event=%s matched=%d succeeded=%d failed=%d",
        event_type,
        len(results),
        succeeded,
        len(results) - succeeded,
    )
    return results


async def manual_trigger(
    db: AsyncSession,
    event_type: str,
    event_data: Dict[str, Any],
) -> list[DeliveryResult]:
    """Admin-initiated firing of an event, outside the normal domain flow."""
    validate_event_type(event_type)
    if event_data is None:
        raise ValidationError("Event type and data are required")
    return await trigger_webhook(db, event_type, event_data)


async def send_test_webhook(
    db: AsyncSession,
    webhook_id: Optional[UUID] = None,
    url: Optional[str] = None,
) -> WebhookTestResult:
    """Send one synthetic `test` event and report what the endpoint answered.

    With `webhook_id` the registered URL and secret are used and the attempt
    is logged; otherwise `url` is probed with a placeholder secret. Health
    counters are never touched.
    """
    target_url = url
    secret = TEST_SECRET

    if webhook_id is not None:
        webhook = await get_webhook(db, webhook_id)
        target_url = webhook.url
        secret = webhook.secret

    if not target_url:
        raise ValidationError("Webhook URL is required")
    validate_url(target_url)

    payload = {
        "event": "test",
        "timestamp": _iso_now(),
        "data": {
            "message": TEST_MESSAGE,
            "testId": secrets.token_hex(8),
        },
    }
    body = _serialize(payload)
    headers = {
        "Content-Type": "application/json",
        "X-Refferq-Event": "test",
        "X-Refferq-Signature": sign_payload_prefixed(body, secret),
        "X-Refferq-Delivery": f"test_{int(time.time() * 1000)}",
    }

    timeout = settings.WEBHOOK_TEST_TIMEOUT_SECONDS
    try:
        async with _http_client(timeout) as client:
            response, error = await _post(client, target_url, body, headers, timeout)
    except Exception as e:
        logger.exception("Webhook test raised: url=%s", target_url)
        response, error = None, str(e) or e.__class__.__name__

    if webhook_id is not None:
        log = WebhookLog(
            webhook_id=webhook_id,
            event_type="test",
            payload=payload,
            attempts=1,
            completed_at=datetime.utcnow(),
        )
        if response is not None:
            log.status = WebhookLogStatus.SUCCESS if response.is_success else WebhookLogStatus.FAILED
            log.status_code = response.status_code
            log.response = response.text[: settings.WEBHOOK_LOG_RESPONSE_CHARS]
        else:
            log.status = WebhookLogStatus.FAILED
            log.error = error
        db.add(log)
        await db.commit()

    if response is None:
        logger.info("Webhook test failed: url=%s error=%s", target_url, error)
        return WebhookTestResult(success=False, message=f"Webhook test failed: {error}")

    logger.info("Webhook test: url=%s status=%d", target_url, response.status_code)
    return WebhookTestResult(
        success=response.is_success,
        status_code=response.status_code,
        message=(
            "Webhook test successful"
            if response.is_success
            else f"Webhook test failed with status {response.status_code}"
        ),
        response=response.text[: settings.WEBHOOK_TEST_RESPONSE_CHARS],
    )
