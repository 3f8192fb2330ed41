"""Tests for app.services.subscriptions: checkout, cancel and resume against a fake gateway."""

import unittest
from datetime import timedelta

from factories import T0, FakeGateway, make_session_factory, make_subscription, make_user

from app.core.clock import utc_now
from app.core.exceptions import ConfigurationError
from app.models import Subscription, SubscriptionStatus
from app.services.payment_gateway import PaymentGatewayError
from app.services.subscription_lifecycle import SubscriptionNotFound
from app.services.subscriptions import (
    SubscriptionConflict,
    SubscriptionService,
    is_subscription_active,
)

S = SubscriptionStatus
SUCCESS_URL = "https://app.holidayheroes.test/subscription/success"
CANCEL_URL = "https://app.holidayheroes.test/subscription/cancelled"


class ServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.user = make_user(self.db, name="Ada")
        self.gateway = FakeGateway()
        self.service = SubscriptionService(self.db, self.gateway)

    def tearDown(self) -> None:
        self.db.close()


class TestCheckout(ServiceTestCase):
    def test_creates_customer_session_and_pending_row(self) -> None:
        result = self.service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        self.assertEqual(result.session.id, f"cs_test_{self.user.id}")
        self.assertEqual(result.subscription.status, S.PENDING)
        self.assertIsNone(result.subscription.stripe_subscription_id)
        self.assertEqual(self.user.stripe_customer_id, f"cus_{self.user.id}")
        self.assertEqual(self.gateway.call_names(), ["create_customer", "create_checkout_session"])

    def test_existing_customer_is_reused(self) -> None:
        self.user.stripe_customer_id = "cus_existing"
        self.db.commit()
        self.service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        self.assertEqual(self.gateway.call_names(), ["create_checkout_session"])
        self.assertEqual(self.gateway.calls[0][1][0], "cus_existing")

    def test_repeated_checkout_reuses_unbound_pending_row(self) -> None:
        first = self.service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        second = self.service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        self.assertEqual(first.subscription.id, second.subscription.id)
        self.assertEqual(self.db.query(Subscription).count(), 1)

    def test_live_subscription_blocks_checkout(self) -> None:
        for status in (S.ACTIVE, S.TRIALING, S.PAST_DUE):
            db = make_session_factory()()
            user = make_user(db)
            make_subscription(db, user, status, "sub_1")
            with self.assertRaises(SubscriptionConflict):
                SubscriptionService(db, FakeGateway()).create_checkout(user, SUCCESS_URL, CANCEL_URL)
            db.close()

    def test_pending_row_bound_to_stripe_blocks_second_checkout(self) -> None:
        self.user.stripe_customer_id = "cus_existing"
        self.db.commit()
        make_subscription(self.db, self.user, S.PENDING, "sub_awaiting_payment")
        with self.assertRaises(SubscriptionConflict):
            self.service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self.db.query(Subscription).count(), 1)

    def test_terminal_history_does_not_block_checkout(self) -> None:
        make_subscription(self.db, self.user, S.CANCELED, "sub_old")
        result = self.service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        self.assertEqual(result.subscription.status, S.PENDING)
        self.assertEqual(self.db.query(Subscription).count(), 2)

    def test_placeholder_price_is_configuration_error(self) -> None:
        service = SubscriptionService(self.db, FakeGateway(price_id="price_..."))
        with self.assertRaises(ConfigurationError):
            service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        self.assertEqual(self.db.query(Subscription).count(), 0)

    def test_gateway_failure_leaves_no_pending_row(self) -> None:
        self.gateway.fail_with = PaymentGatewayError("Stripe could not create customer: boom", 502)
        with self.assertRaises(PaymentGatewayError):
            self.service.create_checkout(self.user, SUCCESS_URL, CANCEL_URL)
        self.assertEqual(self.db.query(Subscription).count(), 0)


class TestCancelAndResume(ServiceTestCase):
    def test_cancel_requests_cancellation_at_period_end(self) -> None:
        make_subscription(self.db, self.user, S.ACTIVE, "sub_1")
        sub = self.service.cancel(self.user.id)
        self.assertEqual(sub.status, S.ACTIVE)
        self.assertTrue(sub.cancel_at_period_end)
        self.assertIsNotNone(sub.canceled_at)
        self.assertEqual(self.gateway.call_names(), ["cancel_subscription"])

    def test_cancel_twice_calls_stripe_once(self) -> None:
        make_subscription(self.db, self.user, S.ACTIVE, "sub_1")
        self.service.cancel(self.user.id)
        self.service.cancel(self.user.id)
        self.assertEqual(self.gateway.call_names(), ["cancel_subscription"])

    def test_cancel_without_live_subscription_is_not_found(self) -> None:
        with self.assertRaises(SubscriptionNotFound):
            self.service.cancel(self.user.id)
        make_subscription(self.db, self.user, S.EXPIRED, "sub_1")
        with self.assertRaises(SubscriptionNotFound):
            self.service.cancel(self.user.id)

    def test_resume_clears_cancellation(self) -> None:
        make_subscription(self.db, self.user, S.ACTIVE, "sub_1", cancel_at_period_end=True, canceled_at=T0)
        sub = self.service.resume(self.user.id)
        self.assertFalse(sub.cancel_at_period_end)
        self.assertIsNone(sub.canceled_at)

    def test_resume_without_pending_cancellation_conflicts(self) -> None:
        make_subscription(self.db, self.user, S.ACTIVE, "sub_1")
        with self.assertRaises(SubscriptionConflict):
            self.service.resume(self.user.id)


class TestStatus(ServiceTestCase):
    def test_no_subscription(self) -> None:
        status = self.service.get_status(self.user.id)
        self.assertFalse(status.has_subscription)
        self.assertFalse(status.has_access)

    def test_active_with_future_period_has_access(self) -> None:
        make_subscription(
            self.db, self.user, S.ACTIVE, "sub_1", current_period_end=utc_now() + timedelta(days=30)
        )
        status = self.service.get_status(self.user.id)
        self.assertEqual(status.status, S.ACTIVE)
        self.assertTrue(status.has_access)

    def test_access_rules(self) -> None:
        future = T0 + timedelta(days=1)
        self.assertTrue(is_subscription_active(Subscription(status=S.TRIALING, current_period_end=future), now=T0))
        self.assertFalse(is_subscription_active(Subscription(status=S.ACTIVE, current_period_end=T0), now=T0))
        self.assertFalse(is_subscription_active(Subscription(status=S.PAST_DUE, current_period_end=future), now=T0))
        self.assertFalse(is_subscription_active(Subscription(status=S.CANCELED), now=T0))
        self.assertFalse(is_subscription_active(None))


if __name__ == "__main__":
    unittest.main()
