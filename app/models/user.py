"""ORM model for application users (auth, RBAC and encrypted PII)."""

import enum

from sqlalchemy import Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import relationship

from app.models.base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(TimestampMixin, Base):
    """
    User account for JWT authentication and role-based access control.

    password_hash is NULL for accounts created through an OAuth provider.
    The *_encrypted columns hold PII ciphertext produced by PIICodec; they are
    never exposed through response schemas.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(
        Enum(UserRole, name="user_role", native_enum=False, length=16),
        nullable=False,
        default=UserRole.USER,
        index=True,
    )
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True, unique=True)

    phone_number_encrypted = Column(Text, nullable=True)
    date_of_birth_encrypted = Column(Text, nullable=True)
    address_encrypted = Column(Text, nullable=True)

    # Deleting a user detaches (does not delete) their subscription history.
    subscriptions = relationship("Subscription", back_populates="user")
