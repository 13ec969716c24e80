"""Tests for webhook delivery, logging and health accounting."""

import asyncio
import uuid
import json

import httpx
import pytest
from unittest.mock import patch
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.database import Base
from app.core.exceptions import NotFoundError, ValidationError
from app.models.webhook import Webhook, WebhookLog, WebhookLogStatus
from app.services.webhook_dispatcher import (
    _record_outcome,
    manual_trigger,
    send_test_webhook,
    trigger_webhook,
)
from app.services.webhook_signature import verify_signature

HOOK_URL = "https://example.com/hook"


async def _make_webhook(db, url=HOOK_URL, events=None, **kwargs) -> Webhook:
    webhook = Webhook(
        name=kwargs.pop("name", "Billing hook"),
        url=url,
        secret=kwargs.pop("secret", "whsec_" + "0" * 48),
        events=events if events is not None else ["referral.approved"],
        **kwargs,
    )
    db.add(webhook)
    await db.commit()
    await db.refresh(webhook)
    return webhook


async def _logs_for(db, webhook_id) -> list[WebhookLog]:
    result = await db.execute(
        select(WebhookLog)
        .where(WebhookLog.webhook_id == webhook_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_successful_delivery_logs_success(db, receiver):
    webhook = await _make_webhook(db)
    receiver.respond(HOOK_URL, 200, "received")

    results = await trigger_webhook(db, "referral.approved", {"referralId": "r-1"})

    assert len(results) == 1
    assert results[0].success is True
    assert results[0].status_code == 200
    assert results[0].webhook_id == webhook.id

    logs = await _logs_for(db, webhook.id)
    assert len(logs) == 1
    assert logs[0].status == WebhookLogStatus.SUCCESS
    assert logs[0].status_code == 200
    assert logs[0].response == "received"
    assert logs[0].error is None
    assert logs[0].attempts == 1
    assert logs[0].completed_at is not None

    await db.refresh(webhook)
    assert webhook.last_triggered_at is not None


@pytest.mark.asyncio
async def test_request_is_signed_over_exact_body(db, receiver):
    webhook = await _make_webhook(db)

    await trigger_webhook(db, "referral.approved", {"referralId": "r-1", "amountCents": 1500})

    request = receiver.sent_to(HOOK_URL)[0]
    body = request.content.decode()
    assert request.method == "POST"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["X-Webhook-Event"] == "referral.approved"
    assert request.headers["X-Webhook-Id"] == str(webhook.id)
    assert "X-Webhook-Timestamp" in request.headers
    # Production deliveries use the bare hex convention
    assert not request.headers["X-Webhook-Signature"].startswith("sha256=")
    assert verify_signature(body, webhook.secret, request.headers["X-Webhook-Signature"])

    payload = json.loads(body)
    assert payload["event"] == "referral.approved"
    assert payload["data"] == {"referralId": "r-1", "amountCents": 1500}
    assert payload["webhookId"] == str(webhook.id)
    assert payload["timestamp"] == request.headers["X-Webhook-Timestamp"]

    logs = await _logs_for(db, webhook.id)
    assert logs[0].payload == payload


@pytest.mark.asyncio
async def test_only_active_subscribed_webhooks_receive(db, receiver):
    a = await _make_webhook(db, url="https://a.example.com/hook")
    b = await _make_webhook(db, url="https://b.example.com/hook", events=["referral.approved", "payout.failed"])
    other = await _make_webhook(db, url="https://c.example.com/hook", events=["payout.failed"])
    inactive = await _make_webhook(db, url="https://d.example.com/hook", is_active=False)

    results = await trigger_webhook(db, "referral.approved", {"referralId": "r-9"})

    assert {r.webhook_id for r in results} == {a.id, b.id}
    assert len(receiver.requests) == 2
    assert await _logs_for(db, other.id) == []
    assert await _logs_for(db, inactive.id) == []
    assert len(await _logs_for(db, a.id)) == 1
    assert len(await _logs_for(db, b.id)) == 1


@pytest.mark.asyncio
async def test_no_subscribers_returns_empty(db, receiver):
    await _make_webhook(db, events=["payout.completed"])

    results = await trigger_webhook(db, "referral.approved", {})

    assert results == []
    assert receiver.requests == []


@pytest.mark.asyncio
async def test_http_error_marks_failed_and_counts(db, receiver):
    webhook = await _make_webhook(db)
    receiver.respond(HOOK_URL, 500, "boom")

    results = await trigger_webhook(db, "referral.approved", {"referralId": "r-1"})

    assert results[0].success is False
    assert results[0].status_code == 500
    assert results[0].error == "HTTP 500"

    logs = await _logs_for(db, webhook.id)
    assert logs[0].status == WebhookLogStatus.FAILED
    assert logs[0].status_code == 500
    assert logs[0].error == "HTTP 500: Internal Server Error"
    assert logs[0].response == "boom"

    await db.refresh(webhook)
    assert webhook.failure_count == 1
    assert webhook.is_active is True
    assert webhook.last_triggered_at is None


@pytest.mark.asyncio
async def test_network_error_records_error_without_status(db, receiver):
    webhook = await _make_webhook(db)
    receiver.fail(HOOK_URL, httpx.ConnectError)

    results = await trigger_webhook(db, "referral.approved", {"referralId": "r-1"})

    assert results[0].success is False
    assert results[0].status_code is None
    assert "Connection refused" in results[0].error

    logs = await _logs_for(db, webhook.id)
    assert logs[0].status == WebhookLogStatus.FAILED
    assert logs[0].status_code is None
    assert logs[0].error

    await db.refresh(webhook)
    assert webhook.failure_count == 1


@pytest.mark.asyncio
async def test_slow_endpoint_is_cut_off_by_timeout(db, receiver):
    webhook = await _make_webhook(db)

    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    receiver.hang(HOOK_URL, slow)

    with patch.object(settings, "WEBHOOK_TIMEOUT_SECONDS", 0.05):
        results = await trigger_webhook(db, "referral.approved", {"referralId": "r-1"})

    assert results[0].success is False
    assert "timed out" in results[0].error

    logs = await _logs_for(db, webhook.id)
    assert logs[0].status == WebhookLogStatus.FAILED
    assert logs[0].status_code is None


@pytest.mark.asyncio
async def test_one_failing_subscriber_does_not_affect_others(db, receiver):
    good = await _make_webhook(db, url="https://good.example.com/hook")
    bad = await _make_webhook(db, url="https://bad.example.com/hook")
    receiver.fail("https://bad.example.com/hook")

    results = {r.webhook_id: r for r in await trigger_webhook(db, "referral.approved", {})}

    assert results[good.id].success is True
    assert results[bad.id].success is False

    await db.refresh(good)
    await db.refresh(bad)
    assert good.failure_count == 0
    assert bad.failure_count == 1


@pytest.mark.asyncio
async def test_consecutive_failures_disable_at_threshold(db, receiver):
    webhook = await _make_webhook(db)
    receiver.respond(HOOK_URL, 503)

    for expected in range(1, 10):
        await trigger_webhook(db, "referral.approved", {})
        await db.refresh(webhook)
        assert webhook.failure_count == expected
        assert webhook.is_active is True

    await trigger_webhook(db, "referral.approved", {})
    await db.refresh(webhook)
    assert webhook.failure_count == 10
    assert webhook.is_active is False

    # Disabled webhooks are no longer called
    assert await trigger_webhook(db, "referral.approved", {}) == []
    assert len(receiver.requests) == 10


@pytest.mark.asyncio
async def test_success_resets_failure_count(db, receiver):
    webhook = await _make_webhook(db, failure_count=7)

    await trigger_webhook(db, "referral.approved", {})

    await db.refresh(webhook)
    assert webhook.failure_count == 0
    assert webhook.is_active is True


@pytest.mark.asyncio
async def test_success_does_not_reenable_disabled_webhook(db):
    webhook = await _make_webhook(db)
    log = WebhookLog(
        webhook_id=webhook.id,
        event_type="referral.approved",
        payload={},
        status=WebhookLogStatus.PENDING,
    )
    db.add(log)
    await db.commit()

    # Disabled between loading and recording the response
    webhook.is_active = False
    webhook.failure_count = 10
    await db.commit()

    result = await _record_outcome(db, webhook.id, log, httpx.Response(200, text="ok"), None)

    assert result.success is True
    await db.refresh(webhook)
    assert webhook.failure_count == 0
    assert webhook.is_active is False


@pytest.mark.asyncio
async def test_concurrent_failures_are_all_counted(tmp_path, receiver):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hooks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with factory() as session:
            webhook = await _make_webhook(session)
        receiver.respond(HOOK_URL, 500)

        async def fire():
            async with factory() as session:
                return await trigger_webhook(session, "referral.approved", {})

        batches = await asyncio.gather(*(fire() for _ in range(6)))
        assert all(len(results) == 1 and not results[0].success for results in batches)

        async with factory() as session:
            stored = await session.get(Webhook, webhook.id)
            assert stored.failure_count == 6
            assert stored.is_active is True
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_manual_trigger_rejects_unknown_event(db, receiver):
    await _make_webhook(db)

    with pytest.raises(ValidationError, match="not.a.real.event"):
        await manual_trigger(db, "not.a.real.event", {})

    assert receiver.requests == []


@pytest.mark.asyncio
async def test_test_probe_uses_prefixed_signature(db, receiver):
    webhook = await _make_webhook(db)

    result = await send_test_webhook(db, webhook_id=webhook.id)

    assert result.success is True
    assert result.status_code == 200
    assert result.message == "Webhook test successful"

    request = receiver.sent_to(HOOK_URL)[0]
    body = request.content.decode()
    assert request.headers["X-Refferq-Event"] == "test"
    assert request.headers["X-Refferq-Delivery"].startswith("test_")
    assert request.headers["X-Refferq-Signature"].startswith("sha256=")
    assert verify_signature(body, webhook.secret, request.headers["X-Refferq-Signature"])

    payload = json.loads(body)
    assert payload["event"] == "test"
    assert payload["data"]["message"]
    assert len(payload["data"]["testId"]) == 16

    logs = await _logs_for(db, webhook.id)
    assert len(logs) == 1
    assert logs[0].event_type == "test"
    assert logs[0].status == WebhookLogStatus.SUCCESS


@pytest.mark.asyncio
async def test_test_probe_does_not_touch_health(db, receiver):
    webhook = await _make_webhook(db, failure_count=3)
    receiver.respond(HOOK_URL, 500, "nope")

    result = await send_test_webhook(db, webhook_id=webhook.id)

    assert result.success is False
    assert result.status_code == 500
    assert result.response == "nope"

    await db.refresh(webhook)
    assert webhook.failure_count == 3
    assert webhook.is_active is True

    logs = await _logs_for(db, webhook.id)
    assert logs[0].status == WebhookLogStatus.FAILED


@pytest.mark.asyncio
async def test_test_probe_raw_url_uses_placeholder_secret(db, receiver):
    url = "https://probe.example.com/incoming"

    result = await send_test_webhook(db, url=url)

    assert result.success is True
    request = receiver.sent_to(url)[0]
    assert verify_signature(request.content, "test_secret", request.headers["X-Refferq-Signature"])

    all_logs = (await db.execute(select(WebhookLog))).scalars().all()
    assert all_logs == []


@pytest.mark.asyncio
async def test_test_probe_network_error(db, receiver):
    url = "https://down.example.com/hook"
    receiver.fail(url)

    result = await send_test_webhook(db, url=url)

    assert result.success is False
    assert result.status_code is None
    assert result.message.startswith("Webhook test failed:")


@pytest.mark.asyncio
async def test_test_probe_reports_unexpected_client_error(db, receiver):
    webhook = await _make_webhook(db)

    async def broken(request):
        raise RuntimeError("boom")

    receiver.hang(HOOK_URL, broken)

    result = await send_test_webhook(db, webhook_id=webhook.id)

    assert result.success is False
    assert result.message == "Webhook test failed: boom"

    logs = await _logs_for(db, webhook.id)
    assert logs[0].status == WebhookLogStatus.FAILED
    assert logs[0].error == "boom"


@pytest.mark.asyncio
async def test_test_probe_requires_target(db, receiver):
    with pytest.raises(ValidationError):
        await send_test_webhook(db)

    with pytest.raises(NotFoundError):
        await send_test_webhook(db, webhook_id=uuid.uuid4())
