import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    verify_password,
)
from ..config import settings
from ..models.models import User
from ..schemas.schemas import Token, TokenRefreshRequest, UserRead

router = APIRouter()
logger = logging.getLogger(__name__)


def _build_token_response(user: User) -> Token:
    access_payload = {
        "sub": str(user.id),
        "role_type": user.role_type,
        "group_id": user.community_group_id,
        "type": "access",
    }
    return Token(
        access_token=create_access_token(access_payload),
        refresh_token=create_refresh_token(str(user.id)),
        token_type="bearer",
        role_type=user.role_type,
        expires_in=settings.access_token_expire_minutes * 60,
        refresh_expires_in=settings.refresh_token_expire_minutes * 60,
    )


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(func.lower(User.email) == form_data.username.lower()).first()
    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.info("Failed login for %s", form_data.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive.")

    return _build_token_response(user)


@router.post("/refresh", response_model=Token)
def refresh_token(
    payload: TokenRefreshRequest,
    db: Session = Depends(get_db),
):
    credentials_exception = HTTPException(status_code=401, detail="Invalid refresh token")
    try:
        decoded = decode_token(payload.refresh_token)
    except JWTError as exc:
        raise credentials_exception from exc

    if decoded.get("type") != "refresh":
        raise credentials_exception

    user_id = decoded.get("sub")
    if not user_id:
        raise credentials_exception

    user = db.get(User, int(user_id))
    if not user or not user.is_active:
        raise credentials_exception

    return _build_token_response(user)


@router.get("/me", response_model=UserRead)
def read_current_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user
