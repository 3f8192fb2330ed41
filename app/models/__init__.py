"""SQLAlchemy ORM models."""

from app.models.base import Base
from app.models.subscription import (
    TERMINAL_STATUSES,
    Subscription,
    SubscriptionStatus,
    WebhookEvent,
)
from app.models.user import User, UserRole

__all__ = [
    "Base",
    "Subscription",
    "SubscriptionStatus",
    "TERMINAL_STATUSES",
    "User",
    "UserRole",
    "WebhookEvent",
]
