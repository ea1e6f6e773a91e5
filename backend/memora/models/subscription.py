"""
Memora Backend — Subscription, History & Webhook Event Models
===============================================================

What:  Billing state reconciled from four payment providers' webhooks.

Table Design Rationale:
    - subscriptions: one row per provider subscription. At most one row per
      user is active/trialing; an upgrade or cancellation supersedes the row
      (status canceled) instead of deleting it.
    - (payment_provider, provider_subscription_id) is what the idempotency
      pre-check looks up before creating a row.
    - subscription_history: append-only audit trail of tier changes.
    - webhook_events: one row per received webhook, including failures.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from memora.database import Base
from memora.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin, utcnow

SUBSCRIPTION_STATUSES = ("active", "trialing", "past_due", "canceled", "incomplete")
LIVE_STATUSES = ("active", "trialing")


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_plan_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tier: Mapped[str] = mapped_column(String(50), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    canceled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # "metadata" is reserved on declarative classes
    extra: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    __table_args__ = (
        Index(
            "idx_subscriptions_provider_ref",
            "payment_provider",
            "provider_subscription_id",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, provider='{self.payment_provider}', "
            f"tier='{self.tier}', status='{self.status}')>"
        )


class SubscriptionHistory(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "subscription_history"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_tier: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_tier: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    billing_cycle: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    payment_provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extra: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class WebhookEvent(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "webhook_events"

    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    response_code: Mapped[int] = mapped_column(Integer, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_webhook_events_provider_created", "provider", "created_at"),
    )
