"""
Subscription state machine: applies Stripe webhook events and expiry sweeps to
local Subscription rows.

Webhooks can arrive more than once and out of order. Each provider event id is
recorded in webhook_events in the same transaction as its effect (duplicates
become no-ops). Staleness is judged per kind of data: last_event_at orders
status changes from invoice and subscription events, while billing periods only
ever move forward, whatever order their events arrive in. Checkout completion
does not move last_event_at. Terminal rows (CANCELED, EXPIRED) never change again.
"""

import logging
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import as_utc, utc_now
from app.models import (
    TERMINAL_STATUSES,
    Subscription,
    SubscriptionStatus,
    User,
    WebhookEvent,
)
from app.schemas.payments import (
    CheckoutCompleted,
    GatewayEvent,
    IgnoredEvent,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from app.services.audit import log_audit_event
from app.services.notifications import SubscriptionNotifier

logger = logging.getLogger(__name__)

S = SubscriptionStatus

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    S.PENDING: frozenset({S.ACTIVE, S.TRIALING, S.EXPIRED}),
    S.ACTIVE: frozenset({S.PAST_DUE, S.CANCELED, S.EXPIRED}),
    S.TRIALING: frozenset({S.ACTIVE, S.PAST_DUE, S.CANCELED, S.EXPIRED}),
    S.PAST_DUE: frozenset({S.ACTIVE, S.CANCELED, S.EXPIRED}),
    S.CANCELED: frozenset(),
    S.EXPIRED: frozenset(),
}

# Stripe subscription.status -> local status. Unlisted values (e.g. "paused") are not applied.
PROVIDER_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "incomplete": S.PENDING,
    "active": S.ACTIVE,
    "trialing": S.TRIALING,
    "past_due": S.PAST_DUE,
    "canceled": S.CANCELED,
    "unpaid": S.EXPIRED,
    "incomplete_expired": S.EXPIRED,
}

# Renewal reminders go out this many days before current_period_end.
REMINDER_LEAD_DAYS = 7
REMINDER_RESEND_AFTER = timedelta(hours=24)

WebhookOutcome = Literal["applied", "noop", "duplicate", "stale", "ignored"]


class SubscriptionNotFound(Exception):
    """Raised when an event references a subscription this system does not know yet."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(sub: Subscription, target: SubscriptionStatus, reason: str) -> bool:
    """Move sub to target if allowed. Returns True when the status changed."""
    current = SubscriptionStatus(sub.status)
    if current == target:
        return False
    if not can_transition(current, target):
        logger.warning(
            "Subscription transition rejected",
            extra={
                "subscription_id": sub.id,
                "from_status": current.value,
                "to_status": target.value,
                "reason": reason,
            },
        )
        return False
    sub.status = target
    logger.info(
        "Subscription status changed",
        extra={
            "subscription_id": sub.id,
            "from_status": current.value,
            "to_status": target.value,
            "reason": reason,
        },
    )
    return True


def _is_stale(sub: Subscription, created: datetime) -> bool:
    """True when a status-bearing event older than the last one applied arrives."""
    last = as_utc(sub.last_event_at)
    return last is not None and created < last


def _mark_seen(sub: Subscription, created: datetime) -> None:
    last = as_utc(sub.last_event_at)
    if last is None or created > last:
        sub.last_event_at = created


def _advance_period(
    sub: Subscription,
    start: datetime | None,
    end: datetime | None,
) -> bool:
    """Move the billing period forward only. Applies regardless of event order."""
    if end is None:
        return False
    current_end = as_utc(sub.current_period_end)
    if current_end is not None and end <= current_end:
        return False
    if start is not None:
        sub.current_period_start = start
    sub.current_period_end = end
    return True


def _find_by_external_id(db: Session, external_id: str) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(Subscription.stripe_subscription_id == external_id)
        .with_for_update()
        .first()
    )


def _find_unbound_pending(db: Session, user_id: int) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(
            Subscription.user_id == user_id,
            Subscription.status == S.PENDING,
            Subscription.stripe_subscription_id.is_(None),
        )
        .order_by(Subscription.id.desc())
        .with_for_update()
        .first()
    )


def _bind_external_id(sub: Subscription, external_id: str) -> bool:
    """Set stripe_subscription_id once; a different id on a bound row is refused."""
    if sub.stripe_subscription_id is None:
        sub.stripe_subscription_id = external_id
        return True
    if sub.stripe_subscription_id != external_id:
        logger.warning(
            "Refusing to rebind subscription to a different Stripe id",
            extra={"subscription_id": sub.id},
        )
        return False
    return True


def _resolve_for_checkout(db: Session, event: CheckoutCompleted) -> Subscription:
    sub = _find_by_external_id(db, event.subscription_id)
    if sub is not None:
        return sub
    if event.user_id is None:
        raise SubscriptionNotFound("Checkout session has no userId metadata")
    sub = _find_unbound_pending(db, event.user_id)
    if sub is not None:
        return sub
    # The PENDING row can be missing if checkout was started outside this API.
    user = db.get(User, event.user_id)
    if user is None:
        raise SubscriptionNotFound(f"User {event.user_id} from checkout metadata does not exist")
    sub = Subscription(
        user_id=user.id,
        stripe_customer_id=event.customer_id,
        status=S.PENDING,
        cancel_at_period_end=False,
    )
    db.add(sub)
    db.flush()
    return sub


def _apply_checkout_completed(db: Session, event: CheckoutCompleted) -> WebhookOutcome:
    if not event.subscription_id:
        return "ignored"
    sub = _resolve_for_checkout(db, event)
    if SubscriptionStatus(sub.status) in TERMINAL_STATUSES:
        return "noop"
    if not _bind_external_id(sub, event.subscription_id):
        return "ignored"
    if event.customer_id and not sub.stripe_customer_id:
        sub.stripe_customer_id = event.customer_id
    # Checkout carries no period data and never moves last_event_at.
    if _is_stale(sub, event.created):
        return "stale"

    if event.payment_status == "no_payment_required":
        target = S.TRIALING
    elif event.payment_status == "paid":
        target = S.ACTIVE
        sub.last_payment_status = "succeeded"
    else:
        # Delayed payment methods: stay PENDING until invoice.payment_succeeded.
        return "applied"
    transition(sub, target, event.event_type)
    return "applied"


def _apply_payment_succeeded(db: Session, event: PaymentSucceeded) -> WebhookOutcome:
    if not event.subscription_id:
        return "ignored"
    sub = _find_by_external_id(db, event.subscription_id)
    if sub is None:
        logger.info(
            "Invoice for unknown subscription ignored",
            extra={"event_id": event.event_id},
        )
        return "ignored"
    if SubscriptionStatus(sub.status) in TERMINAL_STATUSES:
        return "noop"
    period_moved = _advance_period(sub, event.period_start, event.period_end)
    if _is_stale(sub, event.created):
        return "applied" if period_moved else "stale"
    _mark_seen(sub, event.created)
    sub.last_payment_status = "succeeded"
    if SubscriptionStatus(sub.status) in (S.PENDING, S.PAST_DUE):
        transition(sub, S.ACTIVE, event.event_type)
    log_audit_event("PAYMENT_SUCCEEDED", "success", subscription_id=sub.id, user_id=sub.user_id)
    return "applied"


def _apply_payment_failed(db: Session, event: PaymentFailed) -> WebhookOutcome:
    if not event.subscription_id:
        return "ignored"
    sub = _find_by_external_id(db, event.subscription_id)
    if sub is None:
        return "ignored"
    if SubscriptionStatus(sub.status) in TERMINAL_STATUSES:
        return "noop"
    if _is_stale(sub, event.created):
        return "stale"
    _mark_seen(sub, event.created)
    sub.last_payment_status = "failed"
    if SubscriptionStatus(sub.status) in (S.ACTIVE, S.TRIALING):
        transition(sub, S.PAST_DUE, event.event_type)
    log_audit_event("PAYMENT_FAILED", "failure", subscription_id=sub.id, user_id=sub.user_id)
    return "applied"


def _apply_subscription_updated(db: Session, event: SubscriptionUpdated) -> WebhookOutcome:
    snap = event.subscription
    sub = _find_by_external_id(db, snap.id)
    if sub is None and snap.user_id is not None:
        sub = _find_unbound_pending(db, snap.user_id)
        if sub is not None:
            _bind_external_id(sub, snap.id)
    if sub is None:
        raise SubscriptionNotFound(f"No subscription bound to Stripe id {snap.id}")
    if SubscriptionStatus(sub.status) in TERMINAL_STATUSES:
        return "noop"
    period_moved = _advance_period(sub, snap.current_period_start, snap.current_period_end)
    if snap.price_id and not sub.stripe_price_id:
        sub.stripe_price_id = snap.price_id
    if _is_stale(sub, event.created):
        return "applied" if period_moved else "stale"
    _mark_seen(sub, event.created)
    if snap.price_id:
        sub.stripe_price_id = snap.price_id
    # cancel_at_period_end is the "cancellation requested" phase; status is untouched.
    sub.cancel_at_period_end = snap.cancel_at_period_end
    if snap.cancel_at_period_end or snap.status == "canceled":
        sub.canceled_at = snap.canceled_at or sub.canceled_at or event.created
    else:
        sub.canceled_at = None
    sub.trial_ends_at = snap.trial_end

    target = PROVIDER_STATUS_MAP.get(snap.status)
    if target is None:
        logger.info(
            "Unmapped Stripe subscription status left unapplied",
            extra={"subscription_id": sub.id, "provider_status": snap.status},
        )
        return "applied"
    transition(sub, target, event.event_type)
    return "applied"


def _apply_subscription_deleted(db: Session, event: SubscriptionDeleted) -> WebhookOutcome:
    snap = event.subscription
    sub = _find_by_external_id(db, snap.id)
    if sub is None:
        raise SubscriptionNotFound(f"No subscription bound to Stripe id {snap.id}")
    if SubscriptionStatus(sub.status) in TERMINAL_STATUSES:
        return "noop"
    # A deleted Stripe subscription cannot come back, so deletion is applied
    # even when a newer event was already seen.
    _mark_seen(sub, event.created)
    sub.canceled_at = snap.canceled_at or as_utc(sub.canceled_at) or event.created
    _advance_period(sub, snap.current_period_start, snap.current_period_end)
    transition(sub, S.CANCELED, event.event_type)
    return "applied"


def _dispatch(db: Session, event: GatewayEvent) -> WebhookOutcome:
    if isinstance(event, CheckoutCompleted):
        return _apply_checkout_completed(db, event)
    if isinstance(event, PaymentSucceeded):
        return _apply_payment_succeeded(db, event)
    if isinstance(event, PaymentFailed):
        return _apply_payment_failed(db, event)
    if isinstance(event, SubscriptionUpdated):
        return _apply_subscription_updated(db, event)
    if isinstance(event, SubscriptionDeleted):
        return _apply_subscription_deleted(db, event)
    if isinstance(event, IgnoredEvent):
        logger.info("Unhandled webhook event", extra={"event_type": event.event_type})
        return "ignored"
    raise TypeError(f"Unsupported gateway event: {type(event).__name__}")


def apply_webhook_event(db: Session, event: GatewayEvent) -> WebhookOutcome:
    """
    Apply one verified provider event and commit.

    Returns once the effect and the processed-event marker are durable. Raises
    SubscriptionNotFound (nothing committed) so the provider retries later.
    """
    if db.get(WebhookEvent, event.event_id) is not None:
        return "duplicate"
    db.add(WebhookEvent(id=event.event_id, type=event.event_type))
    try:
        db.flush()
    except IntegrityError:
        # A concurrent delivery of the same event won the insert.
        db.rollback()
        return "duplicate"

    try:
        outcome = _dispatch(db, event)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Webhook event processed",
        extra={"event_id": event.event_id, "event_type": event.event_type, "outcome": outcome},
    )
    return outcome


def expire_lapsed_subscriptions(
    db: Session,
    grace: timedelta,
    now: datetime | None = None,
    notifier: SubscriptionNotifier | None = None,
) -> tuple[int, int]:
    """
    Close subscriptions whose period ended more than `grace` ago without renewal.

    Rows with a requested cancellation become CANCELED (cancellation effective);
    all others become EXPIRED and, when a notifier is given, get an expiration
    notice after the commit. Returns (expired, canceled). Safe to run repeatedly.
    """
    now = now or utc_now()
    cutoff = now - grace
    candidates = (
        db.query(Subscription)
        .filter(
            Subscription.status.notin_(list(TERMINAL_STATUSES)),
            Subscription.current_period_end.isnot(None),
            Subscription.current_period_end < cutoff,
        )
        .with_for_update()
        .all()
    )
    expired_subs: list[Subscription] = []
    canceled = 0
    for sub in candidates:
        if sub.cancel_at_period_end:
            if transition(sub, S.CANCELED, "period_end_passed_after_cancel_request"):
                canceled += 1
        elif transition(sub, S.EXPIRED, "period_end_passed_without_renewal"):
            expired_subs.append(sub)
    db.commit()
    expired = len(expired_subs)
    if expired or canceled:
        logger.info(
            "Subscription lifecycle run: cutoff=%s, expired=%s, canceled=%s",
            cutoff.isoformat(),
            expired,
            canceled,
        )

    if notifier is not None:
        for sub in expired_subs:
            if sub.user is None:
                continue
            try:
                notifier.expiration_notice(sub.user, sub)
            except Exception:
                # The status change is committed; a failed notice is not retried.
                logger.exception(
                    "Expiration notice failed",
                    extra={"subscription_id": sub.id, "user_id": sub.user_id},
                )
    return expired, canceled


def send_renewal_reminders(
    db: Session,
    notifier: SubscriptionNotifier,
    lead_days: int = REMINDER_LEAD_DAYS,
    now: datetime | None = None,
) -> int:
    """
    Remind owners of ACTIVE subscriptions whose period ends on the day `lead_days` ahead.

    A row is reminded at most once per REMINDER_RESEND_AFTER; last_reminder_sent_at
    and reminder_count are updated only when the notifier succeeds. Returns the
    number of reminders sent.
    """
    now = now or utc_now()
    window_start = now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=lead_days)
    window_end = window_start + timedelta(days=1)
    resend_cutoff = now - REMINDER_RESEND_AFTER
    candidates = (
        db.query(Subscription)
        .filter(
            Subscription.status == S.ACTIVE,
            Subscription.user_id.isnot(None),
            Subscription.current_period_end >= window_start,
            Subscription.current_period_end < window_end,
            or_(
                Subscription.last_reminder_sent_at.is_(None),
                Subscription.last_reminder_sent_at < resend_cutoff,
            ),
        )
        .order_by(Subscription.id)
        .with_for_update()
        .all()
    )
    sent = 0
    for sub in candidates:
        try:
            notifier.renewal_reminder(sub.user, sub)
        except Exception:
            logger.exception(
                "Renewal reminder failed",
                extra={"subscription_id": sub.id, "user_id": sub.user_id},
            )
            continue
        sub.last_reminder_sent_at = now
        sub.reminder_count = (sub.reminder_count or 0) + 1
        sent += 1
    db.commit()
    if sent:
        logger.info("Renewal reminders sent: %s", sent)
    return sent


def run_subscription_lifecycle(
    db: Session,
    grace: timedelta,
    notifier: SubscriptionNotifier,
    lead_days: int = REMINDER_LEAD_DAYS,
    now: datetime | None = None,
) -> dict[str, int]:
    """Reminders first, then expiry. Used by the CLI and the cron endpoint."""
    reminders = send_renewal_reminders(db, notifier, lead_days=lead_days, now=now)
    expired, canceled = expire_lapsed_subscriptions(db, grace, now=now, notifier=notifier)
    return {"reminders": reminders, "expired": expired, "canceled": canceled}
