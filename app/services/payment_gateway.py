"""Stripe adapter: customers, checkout sessions, subscriptions and webhook verification."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import stripe

from app.core.clock import from_unix
from app.core.exceptions import ConfigurationError
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

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

# Values copied from .env.example templates rather than a real Stripe price.
PLACEHOLDER_PRICE_IDS = frozenset(
    {"price_...", "price_xxx", "price_placeholder", "price_changeme", "changeme"}
)

SUBSCRIPTION_UPDATE_TYPES = ("customer.subscription.created", "customer.subscription.updated")


class GatewayUnconfigured(ConfigurationError):
    """Raised when a Stripe operation is attempted without STRIPE_SECRET_KEY."""


class SignatureVerificationError(Exception):
    """Raised when a webhook body does not match its Stripe-Signature header."""

    def __init__(self, message: str = "Webhook signature verification failed") -> None:
        self.message = message
        super().__init__(message)


class PaymentGatewayError(Exception):
    """Raised when Stripe rejects a request or a payload cannot be parsed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def is_placeholder_price(price_id: str | None) -> bool:
    if not price_id or not price_id.strip():
        return True
    return price_id.strip().lower() in PLACEHOLDER_PRICE_IDS


def _metadata_user_id(obj: Mapping[str, Any]) -> int | None:
    metadata = obj.get("metadata") or {}
    raw = metadata.get("userId") or metadata.get("user_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _first_item(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    items = obj.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


def _snapshot(obj: Mapping[str, Any]) -> SubscriptionSnapshot:
    """Build a snapshot from a Stripe subscription (dict payload or SDK object)."""
    item = _first_item(obj)
    # Newer API versions carry the period on the subscription item.
    period_start = obj.get("current_period_start") or item.get("current_period_start")
    period_end = obj.get("current_period_end") or item.get("current_period_end")
    price = item.get("price") or {}
    customer = obj.get("customer")
    if isinstance(customer, Mapping):
        customer = customer.get("id")
    return SubscriptionSnapshot(
        id=obj["id"],
        status=obj["status"],
        customer_id=customer,
        price_id=price.get("id"),
        current_period_start=from_unix(period_start),
        current_period_end=from_unix(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
        canceled_at=from_unix(obj.get("canceled_at")),
        trial_end=from_unix(obj.get("trial_end")),
        user_id=_metadata_user_id(obj),
    )


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    sub = invoice.get("subscription")
    if sub is None:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        sub = details.get("subscription")
    if isinstance(sub, Mapping):
        sub = sub.get("id")
    return sub


def _invoice_period(invoice: Mapping[str, Any]) -> tuple[Any, Any]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        period = lines[0].get("period") or {}
        return period.get("start"), period.get("end")
    return None, None


def parse_event(payload: Mapping[str, Any]) -> GatewayEvent:
    """Map a verified Stripe event payload onto the typed event union."""
    try:
        event_id = payload["id"]
        event_type = payload["type"]
        created = from_unix(payload["created"])
        obj = payload["data"]["object"]
    except (KeyError, TypeError) as e:
        raise PaymentGatewayError("Malformed webhook payload", 400) from e

    base = {"event_id": event_id, "event_type": event_type, "created": created}
    try:
        if event_type == "checkout.session.completed":
            sub = obj.get("subscription")
            customer = obj.get("customer")
            return CheckoutCompleted(
                **base,
                session_id=obj["id"],
                user_id=_metadata_user_id(obj),
                subscription_id=sub.get("id") if isinstance(sub, Mapping) else sub,
                customer_id=customer.get("id") if isinstance(customer, Mapping) else customer,
                payment_status=obj.get("payment_status"),
            )
        if event_type in ("invoice.payment_succeeded", "invoice.paid"):
            start, end = _invoice_period(obj)
            return PaymentSucceeded(
                **base,
                invoice_id=obj["id"],
                subscription_id=_invoice_subscription_id(obj),
                period_start=from_unix(start),
                period_end=from_unix(end),
            )
        if event_type == "invoice.payment_failed":
            return PaymentFailed(
                **base,
                invoice_id=obj["id"],
                subscription_id=_invoice_subscription_id(obj),
            )
        if event_type in SUBSCRIPTION_UPDATE_TYPES:
            return SubscriptionUpdated(**base, subscription=_snapshot(obj))
        if event_type == "customer.subscription.deleted":
            return SubscriptionDeleted(**base, subscription=_snapshot(obj))
    except (KeyError, TypeError, ValueError) as e:
        raise PaymentGatewayError(f"Malformed {event_type} payload", 400) from e
    return IgnoredEvent(**base)


class StripeGateway:
    """
    Sole boundary between the application and Stripe.

    Built from Settings; holds its own StripeClient instead of the module-level
    stripe.api_key so tests can construct gateways with substitute credentials.
    """

    def __init__(self, settings: Settings) -> None:
        self._secret_key = (
            settings.STRIPE_SECRET_KEY.get_secret_value() if settings.STRIPE_SECRET_KEY else None
        )
        self._webhook_secret = (
            settings.STRIPE_WEBHOOK_SECRET.get_secret_value()
            if settings.STRIPE_WEBHOOK_SECRET
            else None
        )
        self.default_price_id = settings.STRIPE_ANNUAL_PRICE_ID
        self._timeout = settings.STRIPE_REQUEST_TIMEOUT_SEC
        self._client: stripe.StripeClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def _get_client(self) -> stripe.StripeClient:
        if not self._secret_key:
            raise GatewayUnconfigured("Stripe is not configured; set STRIPE_SECRET_KEY.")
        if self._client is None:
            self._client = stripe.StripeClient(
                self._secret_key,
                http_client=stripe.RequestsClient(timeout=self._timeout),
                max_network_retries=2,
            )
        return self._client

    def create_customer(self, email: str, user_id: int, name: str | None = None) -> CustomerRef:
        client = self._get_client()
        params: dict[str, Any] = {"email": email, "metadata": {"userId": str(user_id)}}
        if name:
            params["name"] = name
        try:
            customer = client.v1.customers.create(params=params)
        except stripe.StripeError as e:
            raise PaymentGatewayError(_stripe_message(e, "create customer"), e.http_status) from e
        logger.info("Stripe customer created", extra={"user_id": user_id})
        return CustomerRef(id=customer["id"], email=customer.get("email"))

    def create_checkout_session(
        self,
        customer_id: str,
        user_id: int,
        price_id: str | None,
        success_url: str,
        cancel_url: str,
    ) -> SessionRef:
        client = self._get_client()
        if is_placeholder_price(price_id):
            raise ConfigurationError(
                "Stripe price is not configured; set STRIPE_ANNUAL_PRICE_ID to a real price id."
            )
        metadata = {"userId": str(user_id)}
        params: dict[str, Any] = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "billing_address_collection": "required",
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "allow_promotion_codes": True,
            "subscription_data": {"metadata": metadata},
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": str(user_id),
            "metadata": metadata,
        }
        try:
            session = client.v1.checkout.sessions.create(params=params)
        except stripe.StripeError as e:
            raise PaymentGatewayError(
                _stripe_message(e, "create checkout session"), e.http_status
            ) from e
        return SessionRef(id=session["id"], url=session.get("url"))

    def construct_webhook_event(self, raw_body: bytes, signature: str | None) -> GatewayEvent:
        """
        Verify Stripe-Signature over the exact received bytes, then parse.

        raw_body must be the unmodified request body; re-serialized JSON will not verify.
        """
        self._get_client()
        if not self._webhook_secret:
            raise ConfigurationError("Stripe webhooks are not configured; set STRIPE_WEBHOOK_SECRET.")
        if not signature:
            raise SignatureVerificationError("Missing Stripe-Signature header")
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureVerificationError("Webhook body is not valid UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                self._webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError() from e
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise PaymentGatewayError("Webhook body is not valid JSON", 400) from e
        return parse_event(data)

    def retrieve_subscription(self, external_id: str) -> SubscriptionSnapshot:
        client = self._get_client()
        try:
            sub = client.v1.subscriptions.retrieve(external_id)
        except stripe.StripeError as e:
            raise PaymentGatewayError(
                _stripe_message(e, "retrieve subscription"), e.http_status
            ) from e
        return _snapshot(sub)

    def cancel_subscription(self, external_id: str) -> SubscriptionSnapshot:
        """Schedule cancellation at period end; access continues until then."""
        return self._set_cancel_at_period_end(external_id, True)

    def resume_subscription(self, external_id: str) -> SubscriptionSnapshot:
        return self._set_cancel_at_period_end(external_id, False)

    def _set_cancel_at_period_end(self, external_id: str, value: bool) -> SubscriptionSnapshot:
        client = self._get_client()
        try:
            sub = client.v1.subscriptions.update(
                external_id, params={"cancel_at_period_end": value}
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(
                _stripe_message(e, "update subscription"), e.http_status
            ) from e
        return _snapshot(sub)


def _stripe_message(err: stripe.StripeError, action: str) -> str:
    # user_message is Stripe's customer-safe text; never include request params.
    detail = getattr(err, "user_message", None) or type(err).__name__
    return f"Stripe could not {action}: {detail}"
