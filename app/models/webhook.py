"""Webhook subscription and delivery log models."""

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, ForeignKey, Enum as SQLEnum, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import JSON
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from enum import Enum
from app.core.database import Base


class WebhookEventType(str, Enum):
    """Closed vocabulary of events a subscription can listen to."""
    AFFILIATE_CREATED = "affiliate.created"
    AFFILIATE_APPROVED = "affiliate.approved"
    AFFILIATE_REJECTED = "affiliate.rejected"
    REFERRAL_SUBMITTED = "referral.submitted"
    REFERRAL_APPROVED = "referral.approved"
    REFERRAL_REJECTED = "referral.rejected"
    COMMISSION_CREATED = "commission.created"
    COMMISSION_APPROVED = "commission.approved"
    COMMISSION_PAID = "commission.paid"
    PAYOUT_REQUESTED = "payout.requested"
    PAYOUT_COMPLETED = "payout.completed"
    PAYOUT_FAILED = "payout.failed"


AVAILABLE_EVENTS: list[str] = [e.value for e in WebhookEventType]


class WebhookLogStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RETRYING = "RETRYING"  # reserved, no retry policy yet


class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    secret = Column(String, nullable=False)
    events = Column(JSON, nullable=False, default=list)  # ["referral.approved", ...]
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    failure_count = Column(Integer, nullable=False, default=0)
    last_triggered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, server_default=func.now(), index=True)
    updated_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, server_default=func.now(), onupdate=datetime.utcnow
    )

    logs = relationship(
        "WebhookLog",
        back_populates="webhook",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    webhook_id = Column(
        UUID(as_uuid=True),
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    event_type = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False)  # exact body sent
    status = Column(
        SQLEnum(WebhookLogStatus, name="webhook_log_status_enum"),
        nullable=False,
        default=WebhookLogStatus.PENDING,
        index=True,
    )
    status_code = Column(Integer, nullable=True)
    response = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, server_default=func.now(), index=True)
    completed_at = Column(DateTime, nullable=True)

    webhook = relationship("Webhook", back_populates="logs")
