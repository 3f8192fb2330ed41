"""Shared FastAPI dependencies for components built once from Settings."""

from functools import lru_cache

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.encryption import PIICodec
from app.services.health import HealthCheck, database_check
from app.services.notifications import LoggingNotifier
from app.services.payment_gateway import StripeGateway


@lru_cache
def get_pii_codec() -> PIICodec:
    """Process-wide codec; the key is read once from settings."""
    return PIICodec(get_settings().PII_ENCRYPTION_KEY.get_secret_value())


@lru_cache
def get_payment_gateway() -> StripeGateway:
    return StripeGateway(get_settings())


def get_health_checks() -> dict[str, HealthCheck]:
    return {"database": database_check(SessionLocal)}


@lru_cache
def get_notifier() -> LoggingNotifier:
    return LoggingNotifier(f"{get_settings().APP_BASE_URL}/subscription")
