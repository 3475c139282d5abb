from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel.ext.asyncio.session import AsyncSession

from dependencies import get_session
from models.relational_models import User
from schemas.authentication import LoginResponse, TokenPair
from utilities.authentication import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_TOKEN_EXPIRE_MINUTES,
    authenticate_user,
    create_access_token,
    decode_access_token,
    refresh_header_scheme,
)


router = APIRouter()


def _issue_tokens(user_id: str, role: str) -> TokenPair:
    now_ts = str(int(datetime.now(timezone.utc).timestamp()))
    access_payload = {"sub": user_id, "role": role, "token_type": "access", "jti": f"access-{user_id}-{now_ts}"}
    refresh_payload = {"sub": user_id, "role": role, "token_type": "refresh", "jti": f"refresh-{user_id}-{now_ts}"}

    return TokenPair(
        access_token=create_access_token(access_payload, ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_token=create_access_token(refresh_payload, REFRESH_TOKEN_EXPIRE_MINUTES),
    )


@router.post("/login/", response_model=LoginResponse)
async def login(
    *,
    session: AsyncSession = Depends(get_session),
    form: OAuth2PasswordRequestForm = Depends(),
):
    """Exchange a username (or email) and password for an access/refresh token pair."""
    user = await authenticate_user(form.username, form.password, session)

    tokens = _issue_tokens(str(user.id), user.role.value)

    return LoginResponse(
        **tokens.model_dump(),
        user_id=user.id,
        username=user.username,
        user_role=user.role,
        department=user.department,
        access_expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        refresh_expires_in=REFRESH_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/refresh-token/", response_model=TokenPair)
async def refresh_token(
    request: Request,
    session: AsyncSession = Depends(get_session),
    refresh_header: str | None = Depends(refresh_header_scheme),
):
    """
    Issue a fresh token pair.

    Accepts the refresh token in the `Authorization-Refresh` header, or in the
    standard Authorization header (Bearer) as a fallback.
    """
    token = None
    if refresh_header:
        token = refresh_header.removeprefix("Bearer").strip()

    if not token:
        header_auth = request.headers.get("Authorization")
        if header_auth:
            token = header_auth.removeprefix("Bearer").strip()

    if not token:
        raise HTTPException(status_code=401, detail="No refresh or access token found")

    payload = decode_access_token(token, verify_exp=True)

    if payload.get("token_type") not in ("access", "refresh"):
        raise HTTPException(status_code=401, detail="Unsupported token type")

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Token subject is invalid")

    # the role may have changed since the token was issued
    user = await session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User no longer exists")

    return _issue_tokens(str(user.id), user.role.value)
