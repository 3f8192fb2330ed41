"""
Typed payment-provider data.

Stripe payloads are parsed into these models once, at the gateway boundary;
services downstream only see the discriminated GatewayEvent union.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class CustomerRef(BaseModel):
    id: str
    email: str | None = None


class SessionRef(BaseModel):
    id: str
    url: str | None = None


class SubscriptionSnapshot(BaseModel):
    """Provider-side view of a subscription at one point in time."""

    id: str
    status: str
    customer_id: str | None = None
    price_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    trial_end: datetime | None = None
    user_id: int | None = Field(default=None, description="metadata.userId, when present")


class _EventBase(BaseModel):
    event_id: str
    event_type: str
    created: datetime


class CheckoutCompleted(_EventBase):
    kind: Literal["checkout_completed"] = "checkout_completed"
    session_id: str
    user_id: int | None = None
    subscription_id: str | None = None
    customer_id: str | None = None
    payment_status: str | None = None


class PaymentSucceeded(_EventBase):
    kind: Literal["payment_succeeded"] = "payment_succeeded"
    invoice_id: str
    subscription_id: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None


class PaymentFailed(_EventBase):
    kind: Literal["payment_failed"] = "payment_failed"
    invoice_id: str
    subscription_id: str | None = None


class SubscriptionUpdated(_EventBase):
    kind: Literal["subscription_updated"] = "subscription_updated"
    subscription: SubscriptionSnapshot


class SubscriptionDeleted(_EventBase):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription: SubscriptionSnapshot


class IgnoredEvent(_EventBase):
    kind: Literal["ignored"] = "ignored"


GatewayEvent = Annotated[
    Union[
        CheckoutCompleted,
        PaymentSucceeded,
        PaymentFailed,
        SubscriptionUpdated,
        SubscriptionDeleted,
        IgnoredEvent,
    ],
    Field(discriminator="kind"),
]
