"""Request/response schemas for subscription endpoints."""

from datetime import datetime

from pydantic import BaseModel

from app.models.subscription import SubscriptionStatus


class SubscriptionStatusResponse(BaseModel):
    """Current subscription for the signed-in user (status is null when none exists)."""

    has_subscription: bool
    status: SubscriptionStatus | None = None
    has_access: bool = False
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    trial_ends_at: datetime | None = None


class CheckoutResponse(BaseModel):
    session_id: str
    url: str | None = None
    subscription_id: int
    status: SubscriptionStatus


class CancelResponse(BaseModel):
    success: bool = True
    cancel_at_period_end: bool
    current_period_end: datetime | None = None


class ResumeResponse(BaseModel):
    success: bool = True
    cancel_at_period_end: bool


class WebhookAck(BaseModel):
    received: bool = True


class LifecycleRunResponse(BaseModel):
    success: bool = True
    reminders: int = 0
    expired: int
    canceled: int
