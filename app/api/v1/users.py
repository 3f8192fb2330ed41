"""Self-service endpoints for the signed-in user."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_pii_codec
from app.api.v1.auth import get_current_account
from app.core.database import get_db
from app.core.encryption import DecryptionError, PIICodec
from app.models import User
from app.schemas.user import PrivateProfileResponse, ProfileUpdateRequest, UserPublic
from app.services.profile import read_private_profile, update_profile

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/me", response_model=UserPublic)
def get_me(account: Annotated[User, Depends(get_current_account)]) -> User:
    return account


@router.patch("/me", response_model=UserPublic)
def patch_me(
    body: ProfileUpdateRequest,
    account: Annotated[User, Depends(get_current_account)],
    db: Annotated[Session, Depends(get_db)],
    codec: Annotated[PIICodec, Depends(get_pii_codec)],
) -> User:
    """Update name and PII. PII is stored encrypted and is not part of the response."""
    return update_profile(db, account, body, codec)


@router.get("/me/private", response_model=PrivateProfileResponse)
def get_my_private_profile(
    account: Annotated[User, Depends(get_current_account)],
    codec: Annotated[PIICodec, Depends(get_pii_codec)],
) -> PrivateProfileResponse:
    """The caller's own decrypted PII. There is no way to read another user's PII."""
    try:
        return read_private_profile(account, codec)
    except DecryptionError as e:
        logger.error("Stored PII failed integrity check", extra={"user_id": account.id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stored profile data failed an integrity check.",
        ) from e
