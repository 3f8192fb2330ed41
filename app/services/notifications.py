"""Subscription notices (renewal reminders, expiration notices) sent by the lifecycle job."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from app.core.clock import as_utc

if TYPE_CHECKING:
    from app.models import Subscription, User

logger = logging.getLogger(__name__)


class SubscriptionNotifier(Protocol):
    def renewal_reminder(self, user: User, subscription: Subscription) -> None: ...

    def expiration_notice(self, user: User, subscription: Subscription) -> None: ...


class LoggingNotifier:
    """
    Default notifier: records each notice on this module's logger.

    No mail transport is configured; swap in another SubscriptionNotifier to deliver.
    Email addresses are not logged.
    """

    def __init__(self, renewal_url: str) -> None:
        self.renewal_url = renewal_url

    def _log(self, kind: str, user: User, subscription: Subscription) -> None:
        period_end = as_utc(subscription.current_period_end)
        logger.info(
            "Subscription notice queued: %s",
            kind,
            extra={
                "notice": kind,
                "user_id": user.id,
                "subscription_id": subscription.id,
                "period_end": period_end.date().isoformat() if period_end else None,
                "renewal_url": self.renewal_url,
            },
        )

    def renewal_reminder(self, user: User, subscription: Subscription) -> None:
        self._log("renewal_reminder", user, subscription)

    def expiration_notice(self, user: User, subscription: Subscription) -> None:
        self._log("expiration_notice", user, subscription)
