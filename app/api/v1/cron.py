"""Scheduler-triggered jobs, authenticated with CRON_SECRET as a bearer token."""

import hmac
import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.api.deps import get_notifier
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.schemas.subscription import LifecycleRunResponse
from app.services.notifications import SubscriptionNotifier
from app.services.subscription_lifecycle import run_subscription_lifecycle as run_lifecycle_job

logger = logging.getLogger(__name__)
router = APIRouter()
bearer = HTTPBearer(auto_error=False)


def require_cron_secret(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    if settings.CRON_SECRET is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron endpoints are disabled; set CRON_SECRET.",
        )
    expected = settings.CRON_SECRET.get_secret_value().encode("utf-8")
    given = (credentials.credentials if credentials else "").encode("utf-8")
    if not hmac.compare_digest(given, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get(
    "/subscription-lifecycle",
    response_model=LifecycleRunResponse,
    dependencies=[Depends(require_cron_secret)],
)
def run_subscription_lifecycle(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    notifier: Annotated[SubscriptionNotifier, Depends(get_notifier)],
) -> LifecycleRunResponse:
    """Send renewal reminders, then expire or close subscriptions whose period has lapsed."""
    grace = timedelta(hours=settings.SUBSCRIPTION_EXPIRY_GRACE_HOURS)
    counts = run_lifecycle_job(
        db, grace, notifier, lead_days=settings.SUBSCRIPTION_REMINDER_DAYS
    )
    logger.info("Cron job completed", extra=counts)
    return LifecycleRunResponse(**counts)
