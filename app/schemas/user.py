"""
User projections and profile/admin request bodies.

Response models here are the only shapes a User leaves the API in. None of them
declare password or PII fields, so those columns cannot leak regardless of role.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.user import UserRole


class UserPublic(BaseModel):
    """A user as shown to the user themself."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str | None = None
    role: UserRole
    email_verified_at: datetime | None = None
    created_at: datetime | None = None


class AdminUserItem(BaseModel):
    """User entry for admin list (no password, no PII)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str | None = None
    role: UserRole
    created_at: datetime | None = None
    email_verified_at: datetime | None = None


class UsersListResponse(BaseModel):
    """Response for GET /admin/users (admin only)."""

    users: list[AdminUserItem]


class UserStatsResponse(BaseModel):
    total_users: int
    admin_users: int
    verified_users: int
    recent_users: int = Field(description="Users created in the last 30 days")


class RoleChangeRequest(BaseModel):
    role: UserRole


class DeleteUserResponse(BaseModel):
    success: bool = True


class ProfileUpdateRequest(BaseModel):
    """
    Self-service profile update. PII fields are write-only: they are encrypted
    before reaching storage and are never echoed back.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=255)
    phone_number: str | None = Field(default=None, max_length=32)
    date_of_birth: date | None = None
    address: str | None = Field(default=None, max_length=512)

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str | None) -> str | None:
        if v is None:
            return None
        s = v.strip()
        allowed = set("0123456789+-() ")
        if not s or any(ch not in allowed for ch in s):
            raise ValueError("phone_number may only contain digits, spaces, + - ( )")
        return s

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v: date | None) -> date | None:
        if v is not None and v >= date.today():
            raise ValueError("date_of_birth must be in the past")
        return v


class PrivateProfileResponse(BaseModel):
    """Decrypted PII, returned only to the owning user via GET /users/me/private."""

    phone_number: str | None = None
    date_of_birth: date | None = None
    address: str | None = None
