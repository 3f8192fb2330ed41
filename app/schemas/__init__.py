"""Pydantic request/response schemas."""

from app.schemas.auth import CurrentUser, LoginRequest, SignupRequest, TokenResponse
from app.schemas.health import (
    CheckResult,
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
)
from app.schemas.payments import (
    CheckoutCompleted,
    CustomerRef,
    GatewayEvent,
    IgnoredEvent,
    PaymentFailed,
    PaymentSucceeded,
    SessionRef,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
)
from app.schemas.subscription import (
    CheckoutResponse,
    SubscriptionStatusResponse,
)
from app.schemas.user import (
    AdminUserItem,
    ProfileUpdateRequest,
    RoleChangeRequest,
    UserPublic,
)

__all__ = [
    "AdminUserItem",
    "CheckResult",
    "CheckoutCompleted",
    "CheckoutResponse",
    "CurrentUser",
    "CustomerRef",
    "GatewayEvent",
    "HealthResponse",
    "IgnoredEvent",
    "LivenessResponse",
    "LoginRequest",
    "PaymentFailed",
    "PaymentSucceeded",
    "ProfileUpdateRequest",
    "ReadinessResponse",
    "RoleChangeRequest",
    "SessionRef",
    "SignupRequest",
    "SubscriptionDeleted",
    "SubscriptionSnapshot",
    "SubscriptionStatusResponse",
    "SubscriptionUpdated",
    "TokenResponse",
    "UserPublic",
]
