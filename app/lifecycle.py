"""
CLI entrypoint for the subscription lifecycle job (renewal reminders and expiry). Run from cron, e.g.:

  python -m app.lifecycle

Or hourly: 0 * * * * cd /path/to/holiday-heroes && .venv/bin/python -m app.lifecycle
"""

import logging
import sys
from datetime import timedelta

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.services.notifications import LoggingNotifier
from app.services.subscription_lifecycle import run_subscription_lifecycle

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Send renewal reminders, then expire or close subscriptions past the grace window."""
    settings = get_settings()
    grace = timedelta(hours=settings.SUBSCRIPTION_EXPIRY_GRACE_HOURS)
    db = SessionLocal()
    try:
        notifier = LoggingNotifier(f"{settings.APP_BASE_URL}/subscription")
        counts = run_subscription_lifecycle(
            db, grace, notifier, lead_days=settings.SUBSCRIPTION_REMINDER_DAYS
        )
        logger.info(
            "Lifecycle run completed: reminders=%s, expired=%s, canceled=%s",
            counts["reminders"],
            counts["expired"],
            counts["canceled"],
        )
        return 0
    except Exception as e:
        logger.exception("Lifecycle sweep failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
