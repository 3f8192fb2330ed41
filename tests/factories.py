"""Shared builders for tests: in-memory database, users, subscriptions and a fake gateway."""

from datetime import UTC, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.exceptions import ConfigurationError
from app.models import Base, Subscription, SubscriptionStatus, User, UserRole
from app.schemas.payments import CustomerRef, SessionRef, SubscriptionSnapshot

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
TEST_PII_KEY = "test-pii-key-0123456789abcdef0123456789"


def make_session_factory() -> sessionmaker:
    """SQLite in memory, one shared connection so every session sees the same data."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def make_user(
    db: Session,
    email: str = "user@holidayheroes.com.au",
    role: UserRole = UserRole.USER,
    **kwargs: object,
) -> User:
    user = User(email=email, role=role, **kwargs)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_subscription(
    db: Session,
    user: User | None,
    status: SubscriptionStatus = SubscriptionStatus.PENDING,
    stripe_subscription_id: str | None = None,
    **kwargs: object,
) -> Subscription:
    sub = Subscription(
        user_id=user.id if user else None,
        status=status,
        stripe_subscription_id=stripe_subscription_id,
        cancel_at_period_end=kwargs.pop("cancel_at_period_end", False),
        **kwargs,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


class FakeGateway:
    """Stands in for StripeGateway; records calls and returns canned Stripe responses."""

    def __init__(self, price_id: str | None = "price_annual_2026") -> None:
        self.default_price_id = price_id
        self.calls: list[tuple[str, tuple]] = []
        self.fail_with: Exception | None = None
        self.period_end = T0 + timedelta(days=365)

    def _record(self, name: str, *args: object) -> None:
        self.calls.append((name, args))
        if self.fail_with is not None:
            raise self.fail_with

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def create_customer(self, email: str, user_id: int, name: str | None = None) -> CustomerRef:
        self._record("create_customer", email, user_id, name)
        return CustomerRef(id=f"cus_{user_id}", email=email)

    def create_checkout_session(
        self,
        customer_id: str,
        user_id: int,
        price_id: str | None,
        success_url: str,
        cancel_url: str,
    ) -> SessionRef:
        self._record("create_checkout_session", customer_id, user_id, price_id, success_url, cancel_url)
        if price_id is None:
            raise ConfigurationError("Stripe price is not configured")
        return SessionRef(id=f"cs_test_{user_id}", url=f"https://checkout.stripe.com/c/pay/cs_test_{user_id}")

    def cancel_subscription(self, external_id: str) -> SubscriptionSnapshot:
        self._record("cancel_subscription", external_id)
        return SubscriptionSnapshot(
            id=external_id,
            status="active",
            cancel_at_period_end=True,
            canceled_at=T0,
            current_period_end=self.period_end,
        )

    def resume_subscription(self, external_id: str) -> SubscriptionSnapshot:
        self._record("resume_subscription", external_id)
        return SubscriptionSnapshot(
            id=external_id,
            status="active",
            cancel_at_period_end=False,
            current_period_end=self.period_end,
        )


class RecordingNotifier:
    """Collects (kind, user_id, subscription_id) for each notice; optionally fails."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, int | None, int]] = []
        self.fail_for: set[int] = set()

    def _send(self, kind: str, user: User | None, subscription: Subscription) -> None:
        if subscription.id in self.fail_for:
            raise RuntimeError("mail provider unavailable")
        self.sent.append((kind, user.id if user else None, subscription.id))

    def renewal_reminder(self, user: User, subscription: Subscription) -> None:
        self._send("renewal_reminder", user, subscription)

    def expiration_notice(self, user: User, subscription: Subscription) -> None:
        self._send("expiration_notice", user, subscription)
