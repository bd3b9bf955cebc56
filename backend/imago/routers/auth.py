"""
Imago Occurrences - Authentication Router
Operator login for the admin console.
"""
import logging

from fastapi import APIRouter, HTTPException, status

from .. import auth as auth_utils
from ..models.schemas import LoginRequest, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest):
    """Exchange the operator password for a bearer token."""
    if not auth_utils.verify_password(request.password, auth_utils.ADMIN_PASSWORD_HASH):
        logger.warning("Rejected operator login")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect password",
        )

    return TokenResponse(access_token=auth_utils.create_access_token())
