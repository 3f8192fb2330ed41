"""Security and billing audit events, written to the app.audit logger."""

import logging
from typing import Any, Literal

audit_logger = logging.getLogger("app.audit")

AuditEventType = Literal[
    "SIGNUP",
    "LOGIN_SUCCESS",
    "LOGIN_FAILED",
    "ROLE_CHANGED",
    "ROLE_CHANGE_DENIED",
    "USER_DELETED",
    "USER_DELETE_DENIED",
    "PROFILE_UPDATED",
    "SUBSCRIPTION_CHECKOUT",
    "SUBSCRIPTION_CANCELED",
    "SUBSCRIPTION_RESUMED",
    "WEBHOOK_SIGNATURE_INVALID",
    "PAYMENT_SUCCEEDED",
    "PAYMENT_FAILED",
]


def log_audit_event(
    event_type: AuditEventType,
    result: Literal["success", "failure"],
    **details: Any,
) -> None:
    """Emit one audit record. Callers must not pass secrets, signatures or PII values."""
    level = logging.INFO if result == "success" else logging.WARNING
    audit_logger.log(
        level,
        "Audit event: %s",
        event_type,
        extra={"audit_event": event_type, "audit_result": result, **details},
    )
