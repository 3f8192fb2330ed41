"""ORM models for Stripe-backed subscriptions and processed webhook events."""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import relationship

from app.models.base import Base, TimestampMixin


class SubscriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED})


class Subscription(TimestampMixin, Base):
    """
    One billing relationship between a user and Stripe.

    Rows are never deleted by the application; CANCELED and EXPIRED rows stay as
    history and a new row is created for the next checkout. stripe_subscription_id
    is bound once (on checkout completion) and never rewritten.
    """

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    stripe_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_price_id = Column(String(255), nullable=True)
    status = Column(
        Enum(SubscriptionStatus, name="subscription_status", native_enum=False, length=16),
        nullable=False,
        default=SubscriptionStatus.PENDING,
        index=True,
    )
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    last_payment_status = Column(String(32), nullable=True)
    # Provider timestamp of the newest status-bearing event applied to this row.
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    last_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0, server_default="0")

    user = relationship("User", back_populates="subscriptions")


class WebhookEvent(Base):
    """Provider event ids that have been applied; redeliveries are acknowledged as no-ops."""

    __tablename__ = "webhook_events"

    id = Column(String(255), primary_key=True)
    type = Column(String(128), nullable=False)
    received_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
