"""
Admin user management with the last-admin invariant.

Role changes and deletions lock every ADMIN row (SELECT ... FOR UPDATE, ordered by
id) before counting, so two concurrent demotions serialize and the second one
sees the first one's result. A refused operation rolls back and changes nothing.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from app.core.clock import utc_now
from app.models import User, UserRole
from app.services.audit import log_audit_event

logger = logging.getLogger(__name__)


class AdminGuardError(Exception):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class LastAdminViolation(AdminGuardError):
    """Raised when an operation would leave the system without any ADMIN."""


class SelfDeletionDenied(AdminGuardError):
    """Raised when an admin tries to delete their own account."""


class UserNotFound(AdminGuardError):
    """Raised when the target user does not exist."""


def admin_lock_statement() -> Select:
    """SELECT every ADMIN row FOR UPDATE, ordered by id."""
    return (
        select(User)
        .where(User.role == UserRole.ADMIN)
        .order_by(User.id)
        .with_for_update()
    )


def _lock_admins(db: Session) -> list[User]:
    return list(db.scalars(admin_lock_statement()).all())


def _lock_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).with_for_update().first()
    if user is None:
        raise UserNotFound("User not found")
    return user


def change_role(
    db: Session,
    acting_user_id: int,
    target_user_id: int,
    new_role: UserRole,
) -> User:
    """Set target's role. Demoting the only ADMIN raises LastAdminViolation."""
    try:
        admins = _lock_admins(db)
        target = _lock_user(db, target_user_id)
        if (
            new_role != UserRole.ADMIN
            and target.role == UserRole.ADMIN
            and len(admins) <= 1
        ):
            raise LastAdminViolation("Cannot remove the last admin")
        previous = UserRole(target.role)
        target.role = new_role
        db.commit()
    except AdminGuardError as e:
        db.rollback()
        log_audit_event(
            "ROLE_CHANGE_DENIED",
            "failure",
            actor_id=acting_user_id,
            target_id=target_user_id,
            reason=e.message,
        )
        raise
    db.refresh(target)
    log_audit_event(
        "ROLE_CHANGED",
        "success",
        actor_id=acting_user_id,
        target_id=target_user_id,
        from_role=previous.value,
        to_role=UserRole(new_role).value,
    )
    return target


def delete_user(db: Session, acting_user_id: int, target_user_id: int) -> None:
    """Delete target. Self-deletion is refused first; then the last-admin check."""
    try:
        if acting_user_id == target_user_id:
            raise SelfDeletionDenied("Cannot delete your own account")
        admins = _lock_admins(db)
        target = _lock_user(db, target_user_id)
        if target.role == UserRole.ADMIN and len(admins) <= 1:
            raise LastAdminViolation("Cannot delete the last admin")
        db.delete(target)
        db.commit()
    except AdminGuardError as e:
        db.rollback()
        log_audit_event(
            "USER_DELETE_DENIED",
            "failure",
            actor_id=acting_user_id,
            target_id=target_user_id,
            reason=e.message,
        )
        raise
    log_audit_event("USER_DELETED", "success", actor_id=acting_user_id, target_id=target_user_id)


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


def user_stats(db: Session, now: datetime | None = None) -> dict[str, int]:
    since = (now or utc_now()) - timedelta(days=30)
    total = db.query(func.count(User.id)).scalar() or 0
    admins = db.query(func.count(User.id)).filter(User.role == UserRole.ADMIN).scalar() or 0
    verified = (
        db.query(func.count(User.id)).filter(User.email_verified_at.isnot(None)).scalar() or 0
    )
    recent = db.query(func.count(User.id)).filter(User.created_at >= since).scalar() or 0
    return {
        "total_users": total,
        "admin_users": admins,
        "verified_users": verified,
        "recent_users": recent,
    }
