"""Admin user management (RBAC: ADMIN only)."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.v1.auth import require_admin
from app.core.database import get_db
from app.models import User
from app.schemas.auth import CurrentUser
from app.schemas.user import (
    AdminUserItem,
    DeleteUserResponse,
    RoleChangeRequest,
    UsersListResponse,
    UserStatsResponse,
)
from app.services.admin_guard import (
    LastAdminViolation,
    SelfDeletionDenied,
    UserNotFound,
    change_role,
    delete_user,
    list_users,
    user_stats,
)

router = APIRouter()


@router.get("/users", response_model=UsersListResponse)
def get_users(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> UsersListResponse:
    """List all users, newest first. No password or PII fields are returned."""
    return UsersListResponse(
        users=[AdminUserItem.model_validate(u) for u in list_users(db)]
    )


@router.get("/stats", response_model=UserStatsResponse)
def get_stats(
    _admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> UserStatsResponse:
    return UserStatsResponse(**user_stats(db))


@router.patch("/users/{user_id}/role", response_model=AdminUserItem)
def patch_user_role(
    user_id: int,
    body: RoleChangeRequest,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    try:
        return change_role(db, admin.id, user_id, body.role)
    except UserNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except LastAdminViolation as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e


@router.delete("/users/{user_id}", response_model=DeleteUserResponse)
def remove_user(
    user_id: int,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> DeleteUserResponse:
    try:
        delete_user(db, admin.id, user_id)
    except UserNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e
    except (SelfDeletionDenied, LastAdminViolation) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    return DeleteUserResponse(success=True)
