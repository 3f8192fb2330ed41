"""Subscription use-cases for signed-in users: status, checkout, cancel and resume."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.core.clock import as_utc, utc_now
from app.core.exceptions import ConfigurationError
from app.models import TERMINAL_STATUSES, Subscription, SubscriptionStatus, User
from app.schemas.payments import SessionRef
from app.schemas.subscription import SubscriptionStatusResponse
from app.services.audit import log_audit_event
from app.services.payment_gateway import is_placeholder_price
from app.services.subscription_lifecycle import SubscriptionNotFound

if TYPE_CHECKING:
    from app.services.payment_gateway import StripeGateway

# Statuses that already give (or are recovering) paid access; a new checkout is refused.
LIVE_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE}
)


class SubscriptionConflict(Exception):
    """Raised when the requested operation does not fit the user's subscription state."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass
class CheckoutResult:
    session: SessionRef
    subscription: Subscription


def is_subscription_active(sub: Subscription | None, now: datetime | None = None) -> bool:
    """ACTIVE or TRIALING with a period that has not ended yet."""
    if sub is None:
        return False
    if SubscriptionStatus(sub.status) not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
        return False
    period_end = as_utc(sub.current_period_end)
    return period_end is None or period_end > (now or utc_now())


def _ensure_no_open_checkout(open_subs: list[Subscription]) -> None:
    """A live row, or a PENDING row Stripe already attached a subscription to, blocks checkout."""
    for sub in open_subs:
        status = SubscriptionStatus(sub.status)
        if status in LIVE_STATUSES:
            raise SubscriptionConflict("You already have an active subscription")
        if status == SubscriptionStatus.PENDING and sub.stripe_subscription_id is not None:
            raise SubscriptionConflict("A checkout is already awaiting payment confirmation")


class SubscriptionService:
    def __init__(self, db: Session, gateway: StripeGateway) -> None:
        self.db = db
        self.gateway = gateway

    def latest_subscription(self, user_id: int, lock: bool = False) -> Subscription | None:
        query = (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.id.desc())
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def get_status(self, user_id: int) -> SubscriptionStatusResponse:
        sub = self.latest_subscription(user_id)
        if sub is None:
            return SubscriptionStatusResponse(has_subscription=False)
        return SubscriptionStatusResponse(
            has_subscription=True,
            status=sub.status,
            has_access=is_subscription_active(sub),
            current_period_end=sub.current_period_end,
            cancel_at_period_end=bool(sub.cancel_at_period_end),
            trial_ends_at=sub.trial_ends_at,
        )

    def _live_subscriptions(self, user_id: int) -> list[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status.notin_(list(TERMINAL_STATUSES)),
            )
            .order_by(Subscription.id.desc())
            .with_for_update()
            .all()
        )

    def create_checkout(self, user: User, success_url: str, cancel_url: str) -> CheckoutResult:
        """
        Start a Stripe checkout and record a PENDING subscription for it.

        The PENDING row is created only after Stripe accepted the session, so a
        gateway failure leaves no local trace besides the Stripe customer id.
        """
        price_id = self.gateway.default_price_id
        if is_placeholder_price(price_id):
            raise ConfigurationError(
                "Stripe price is not configured; set STRIPE_ANNUAL_PRICE_ID to a real price id."
            )

        open_subs = self._live_subscriptions(user.id)
        _ensure_no_open_checkout(open_subs)

        if not user.stripe_customer_id:
            customer = self.gateway.create_customer(user.email, user.id, user.name)
            user.stripe_customer_id = customer.id
            self.db.commit()
            # Locks were released by the commit; take them again before writing.
            open_subs = self._live_subscriptions(user.id)
            _ensure_no_open_checkout(open_subs)

        session = self.gateway.create_checkout_session(
            user.stripe_customer_id,
            user.id,
            price_id,
            success_url,
            cancel_url,
        )

        pending = next(
            (
                s
                for s in open_subs
                if SubscriptionStatus(s.status) == SubscriptionStatus.PENDING
                and s.stripe_subscription_id is None
            ),
            None,
        )
        if pending is None:
            pending = Subscription(user_id=user.id, status=SubscriptionStatus.PENDING)
            self.db.add(pending)
        pending.stripe_customer_id = user.stripe_customer_id
        pending.stripe_price_id = price_id
        pending.cancel_at_period_end = False
        self.db.commit()
        self.db.refresh(pending)

        log_audit_event(
            "SUBSCRIPTION_CHECKOUT",
            "success",
            user_id=user.id,
            subscription_id=pending.id,
        )
        return CheckoutResult(session=session, subscription=pending)

    def _require_cancellable(self, user_id: int) -> Subscription:
        sub = self.latest_subscription(user_id, lock=True)
        if (
            sub is None
            or SubscriptionStatus(sub.status) not in LIVE_STATUSES
            or not sub.stripe_subscription_id
        ):
            raise SubscriptionNotFound("No active subscription found")
        return sub

    def cancel(self, user_id: int) -> Subscription:
        """
        Request cancellation at period end. Status stays as-is; it becomes
        CANCELED when Stripe reports the subscription deleted or the period lapses.
        """
        sub = self._require_cancellable(user_id)
        if sub.cancel_at_period_end:
            return sub
        snapshot = self.gateway.cancel_subscription(sub.stripe_subscription_id)
        sub.cancel_at_period_end = True
        sub.canceled_at = snapshot.canceled_at or utc_now()
        if snapshot.current_period_end:
            sub.current_period_end = snapshot.current_period_end
        self.db.commit()
        self.db.refresh(sub)
        log_audit_event("SUBSCRIPTION_CANCELED", "success", user_id=user_id, subscription_id=sub.id)
        return sub

    def resume(self, user_id: int) -> Subscription:
        sub = self._require_cancellable(user_id)
        if not sub.cancel_at_period_end:
            raise SubscriptionConflict("Subscription is not scheduled for cancellation")
        self.gateway.resume_subscription(sub.stripe_subscription_id)
        sub.cancel_at_period_end = False
        sub.canceled_at = None
        self.db.commit()
        self.db.refresh(sub)
        log_audit_event("SUBSCRIPTION_RESUMED", "success", user_id=user_id, subscription_id=sub.id)
        return sub
