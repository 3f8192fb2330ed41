"""Stripe webhook receiver. The body is read raw; it must not be parsed before verification."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_payment_gateway
from app.core.database import get_db
from app.core.exceptions import ConfigurationError
from app.schemas.subscription import WebhookAck
from app.services.audit import log_audit_event
from app.services.payment_gateway import (
    PaymentGatewayError,
    SignatureVerificationError,
    StripeGateway,
)
from app.services.subscription_lifecycle import SubscriptionNotFound, apply_webhook_event

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[StripeGateway, Depends(get_payment_gateway)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> WebhookAck:
    """
    Verify and apply one Stripe event. Acknowledges only after the event and its
    processed marker are committed, so a failure here makes Stripe retry.
    """
    payload = await request.body()
    correlation_id = request.headers.get("x-request-id", "unknown")

    try:
        event = gateway.construct_webhook_event(payload, stripe_signature)
    except ConfigurationError as e:
        logger.error("Stripe webhook received but not configured", extra={"correlation_id": correlation_id})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message) from e
    except SignatureVerificationError as e:
        log_audit_event("WEBHOOK_SIGNATURE_INVALID", "failure", correlation_id=correlation_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except PaymentGatewayError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e

    try:
        outcome = await run_in_threadpool(apply_webhook_event, db, event)
    except SubscriptionNotFound as e:
        logger.error(
            "Webhook references unknown subscription",
            extra={"correlation_id": correlation_id, "event_id": event.event_id},
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e

    logger.info(
        "Stripe webhook handled",
        extra={
            "correlation_id": correlation_id,
            "event_id": event.event_id,
            "event_type": event.event_type,
            "outcome": outcome,
        },
    )
    return WebhookAck(received=True)
