"""Request/response schemas for auth endpoints."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.user import UserRole


class LoginRequest(BaseModel):
    """Credentials for login."""

    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=8, max_length=128, description="Password")


class SignupRequest(BaseModel):
    """New account with email + password. Role is always USER."""

    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=8, max_length=128, description="Password")
    name: str | None = Field(default=None, max_length=255)


class SignupResponse(BaseModel):
    message: str = "User created successfully"
    user_id: int


class TokenResponse(BaseModel):
    """JWT access token returned after successful login."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")


class CurrentUser(BaseModel):
    """Authenticated user (id, email, role) for dependency injection."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: UserRole
