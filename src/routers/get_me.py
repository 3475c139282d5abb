from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from dependencies import get_permissions, get_session
from models.relational_models import User
from schemas.user import UserPublic
from utilities.authentication import oauth2_scheme
from utilities.permissions import Permissions


router = APIRouter()


@router.get(
    "/get_me/",
    response_model=UserPublic
)
async def get_me(
    *,
    session: AsyncSession = Depends(get_session),
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """Return the currently authenticated user's profile."""
    return await session.get(User, perms.user_id)
