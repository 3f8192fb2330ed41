"""Self-service profile updates: PII is encrypted before it reaches the session."""

from datetime import date

from sqlalchemy.orm import Session

from app.core.encryption import PIICodec
from app.models import User
from app.schemas.user import PrivateProfileResponse, ProfileUpdateRequest
from app.services.audit import log_audit_event


def update_profile(
    db: Session,
    user: User,
    body: ProfileUpdateRequest,
    codec: PIICodec,
) -> User:
    """Apply the fields present in body. Omitted fields are left unchanged."""
    fields = body.model_fields_set
    if "name" in fields:
        user.name = body.name
    if "phone_number" in fields:
        user.phone_number_encrypted = codec.encrypt_optional(body.phone_number)
    if "date_of_birth" in fields:
        dob = body.date_of_birth.isoformat() if body.date_of_birth else None
        user.date_of_birth_encrypted = codec.encrypt_optional(dob)
    if "address" in fields:
        user.address_encrypted = codec.encrypt_optional(body.address)
    db.commit()
    db.refresh(user)
    # Field names only; values never go to logs.
    log_audit_event("PROFILE_UPDATED", "success", user_id=user.id, fields=sorted(fields))
    return user


def read_private_profile(user: User, codec: PIICodec) -> PrivateProfileResponse:
    """Decrypt the user's own PII. Raises DecryptionError if any stored value fails authentication."""
    dob = codec.decrypt_optional(user.date_of_birth_encrypted)
    return PrivateProfileResponse(
        phone_number=codec.decrypt_optional(user.phone_number_encrypted),
        date_of_birth=date.fromisoformat(dob) if dob else None,
        address=codec.decrypt_optional(user.address_encrypted),
    )
