from typing import Any, AsyncGenerator, Callable, Dict
from uuid import UUID

from fastapi import HTTPException, Request, Depends, status
from sqlmodel.ext.asyncio.session import AsyncSession

from database import async_engine
from models.relational_models import User
from utilities.authentication import decode_access_token
from utilities.exceptions import PermissionDeniedError
from utilities.permissions import Permissions


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Asynchronous dependency providing one database session per request.

    The session is closed (and any open transaction rolled back) when the
    request finishes.
    """
    async with AsyncSession(async_engine) as session:
        yield session


async def get_current_user(request: Request) -> Dict[str, Any]:
    """
    Extract and validate the access token from the Authorization header.

    - Decodes the JWT with `decode_access_token`, which raises HTTPException
      on invalid/expired tokens.
    - Ensures token_type == 'access'.
    - Ensures the subject claim exists.

    Returns a dictionary describing the token holder (id, role and the
    remaining claims).
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    token = auth_header.removeprefix("Bearer").strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")

    payload = decode_access_token(token)

    if payload.get("token_type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Provided token is not an access token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token claims are incomplete")

    return {"id": user_id, "role": payload.get("role"), **{k: v for k, v in payload.items() if k not in ("sub", "role")}}


async def get_permissions(
    session: AsyncSession = Depends(get_session),
    _user: Dict[str, Any] = Depends(get_current_user),
) -> Permissions:
    """
    Resolve the caller's permission set from their current database row.

    Role and department are read from the database rather than the token, so
    changes made by an admin apply on the next request.
    """
    try:
        user_id = UUID(str(_user["id"]))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token subject is invalid")

    user = await session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User no longer exists")

    return Permissions.for_user(user)


def require_capability(capability: str) -> Callable[..., Permissions]:
    """
    Usage:
        @router.get("/users/")
        async def list_users(perms: Permissions = Depends(require_capability("can_manage_users"))):
            ...
    """
    def dependency(perms: Permissions = Depends(get_permissions)) -> Permissions:
        if not getattr(perms, capability):
            raise PermissionDeniedError("You do not have permission to perform this action")
        return perms

    return dependency
