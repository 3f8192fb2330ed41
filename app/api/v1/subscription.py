"""Subscription endpoints for the signed-in user: status, checkout, cancel, resume."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_payment_gateway
from app.api.v1.auth import get_current_account
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.exceptions import ConfigurationError
from app.models import User
from app.schemas.subscription import (
    CancelResponse,
    CheckoutResponse,
    ResumeResponse,
    SubscriptionStatusResponse,
)
from app.services.payment_gateway import PaymentGatewayError, StripeGateway
from app.services.subscription_lifecycle import SubscriptionNotFound
from app.services.subscriptions import SubscriptionConflict, SubscriptionService

logger = logging.getLogger(__name__)
router = APIRouter()


def get_subscription_service(
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[StripeGateway, Depends(get_payment_gateway)],
) -> SubscriptionService:
    return SubscriptionService(db, gateway)


def _gateway_http_error(e: Exception) -> HTTPException:
    """Map configuration and Stripe failures to 503/502 without internal detail."""
    if isinstance(e, ConfigurationError):
        logger.error("Payment configuration error", extra={"reason": e.message[:200]})
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payments are not available right now.",
        )
    logger.error("Payment gateway error", extra={"reason": str(e)[:200]})
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="The payment provider could not process the request.",
    )


@router.get("", response_model=SubscriptionStatusResponse)
def get_subscription_status(
    account: Annotated[User, Depends(get_current_account)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> SubscriptionStatusResponse:
    return service.get_status(account.id)


@router.post("/checkout", response_model=CheckoutResponse)
def post_checkout(
    account: Annotated[User, Depends(get_current_account)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CheckoutResponse:
    """Start the annual-plan checkout; returns the Stripe-hosted URL to redirect to."""
    base = settings.APP_BASE_URL
    try:
        result = service.create_checkout(
            account,
            success_url=f"{base}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/subscription/cancelled",
        )
    except SubscriptionConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    except (ConfigurationError, PaymentGatewayError) as e:
        raise _gateway_http_error(e) from e
    return CheckoutResponse(
        session_id=result.session.id,
        url=result.session.url,
        subscription_id=result.subscription.id,
        status=result.subscription.status,
    )


@router.post("/cancel", response_model=CancelResponse)
def post_cancel(
    account: Annotated[User, Depends(get_current_account)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> CancelResponse:
    """Cancel at period end; access continues until current_period_end."""
    try:
        sub = service.cancel(account.id)
    except SubscriptionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except (ConfigurationError, PaymentGatewayError) as e:
        raise _gateway_http_error(e) from e
    return CancelResponse(
        cancel_at_period_end=bool(sub.cancel_at_period_end),
        current_period_end=sub.current_period_end,
    )


@router.post("/resume", response_model=ResumeResponse)
def post_resume(
    account: Annotated[User, Depends(get_current_account)],
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> ResumeResponse:
    try:
        sub = service.resume(account.id)
    except SubscriptionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except SubscriptionConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    except (ConfigurationError, PaymentGatewayError) as e:
        raise _gateway_http_error(e) from e
    return ResumeResponse(cancel_at_period_end=bool(sub.cancel_at_period_end))
