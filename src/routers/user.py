import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import func, or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from dependencies import get_session, require_capability
from models.relational_models import Ticket, TicketUpdate, User
from schemas.stats import TopItem, UserActivity, UserStats
from schemas.user import PasswordReset, UserCreate, UserPublic, UserUpdate
from utilities.authentication import get_password_hash, oauth2_scheme
from utilities.exceptions import ConflictError, FieldValidationError, ForbiddenStateError, NotFoundError
from utilities.permissions import Permissions
from utilities.photo_storage import remove_photo


router = APIRouter()

logger = logging.getLogger(__name__)

MANAGE_USERS = Depends(require_capability("can_manage_users"))


async def _get_user_or_404(session: AsyncSession, user_id: UUID) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def _ensure_unique(
    session: AsyncSession,
    username: str | None,
    email: str | None,
    exclude_id: UUID | None = None,
) -> None:
    conditions = []
    if username:
        conditions.append(User.username == username)
    if email:
        conditions.append(User.email == email)
    if not conditions:
        return

    query = select(User.id).where(or_(*conditions))
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    result = await session.exec(query)
    if result.first() is not None:
        raise ConflictError("Username or email already exists")


@router.get(
    "/users/",
    response_model=list[UserPublic],
)
async def get_users(
    *,
    session: AsyncSession = Depends(get_session),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, le=200),
    _perms: Permissions = MANAGE_USERS,
    _: str = Depends(oauth2_scheme),
):
    """List users ordered by username. Admin/IT only."""
    users_query = select(User).order_by(User.username).offset(offset).limit(limit)
    result = await session.exec(users_query)
    return result.all()


@router.post(
    "/users/",
    response_model=UserPublic,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(
    *,
    session: AsyncSession = Depends(get_session),
    user_create: UserCreate,
    perms: Permissions = MANAGE_USERS,
    _: str = Depends(oauth2_scheme),
):
    await _ensure_unique(session, user_create.username, user_create.email)

    try:
        db_user = User(
            username=user_create.username,
            email=user_create.email,
            department=user_create.department,
            role=user_create.role,
            password=get_password_hash(user_create.password),
        )

        session.add(db_user)
        await session.commit()
        await session.refresh(db_user)

    except IntegrityError:
        await session.rollback()
        # keep the message generic to avoid leaking DB details
        raise ConflictError("Username or email already exists")

    logger.info("User %s (%s) created by %s", db_user.username, db_user.role.value, perms.username)
    return db_user


@router.get(
    "/users/{user_id}",
    response_model=UserPublic,
)
async def get_user(
    *,
    session: AsyncSession = Depends(get_session),
    user_id: UUID,
    _perms: Permissions = MANAGE_USERS,
    _: str = Depends(oauth2_scheme),
):
    return await _get_user_or_404(session, user_id)


@router.put(
    "/users/{user_id}",
    response_model=UserPublic,
)
async def update_user(
    *,
    session: AsyncSession = Depends(get_session),
    user_id: UUID,
    user_update: UserUpdate,
    perms: Permissions = MANAGE_USERS,
    _: str = Depends(oauth2_scheme),
):
    target_user = await _get_user_or_404(session, user_id)

    update_data = user_update.model_dump(exclude_unset=True, exclude_none=True)
    if not update_data:
        raise FieldValidationError([], detail="No fields to update")

    await _ensure_unique(session, update_data.get("username"), update_data.get("email"), exclude_id=user_id)

    for field, value in update_data.items():
        setattr(target_user, field, value)

    try:
        session.add(target_user)
        await session.commit()
        await session.refresh(target_user)
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Username or email already exists")

    logger.info("User %s updated by %s: %s", target_user.username, perms.username, sorted(update_data))
    return target_user


@router.delete(
    "/users/{user_id}",
    response_model=dict[str, str],
)
async def delete_user(
    *,
    session: AsyncSession = Depends(get_session),
    user_id: UUID,
    perms: Permissions = MANAGE_USERS,
    _: str = Depends(oauth2_scheme),
):
    """
    Delete a user. Tickets they created go with them (and so do those
    tickets' photos); tickets assigned to them become unassigned.
    """
    if not perms.can_delete_user(user_id):
        raise ForbiddenStateError("Cannot delete your own account")

    target_user = await _get_user_or_404(session, user_id)
    username = target_user.username

    result = await session.exec(
        select(Ticket.photo_url).where(Ticket.created_by == user_id, Ticket.photo_url.is_not(None))
    )
    photo_urls = list(result.all())

    try:
        await session.delete(target_user)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    for photo_url in photo_urls:
        remove_photo(photo_url)

    logger.info("User %s deleted by %s", username, perms.username)
    return {"msg": "User successfully deleted"}


@router.put(
    "/users/{user_id}/reset-password",
    response_model=dict[str, str],
)
async def reset_password(
    *,
    session: AsyncSession = Depends(get_session),
    user_id: UUID,
    password_reset: PasswordReset,
    perms: Permissions = MANAGE_USERS,
    _: str = Depends(oauth2_scheme),
):
    target_user = await _get_user_or_404(session, user_id)
    username = target_user.username

    target_user.password = get_password_hash(password_reset.new_password)
    session.add(target_user)
    await session.commit()

    logger.info("Password of %s reset by %s", username, perms.username)
    return {"msg": "Password reset successfully"}


@router.get(
    "/users/{user_id}/stats",
    response_model=UserStats,
)
async def get_user_stats(
    *,
    session: AsyncSession = Depends(get_session),
    user_id: UUID,
    _perms: Permissions = MANAGE_USERS,
    _: str = Depends(oauth2_scheme),
):
    """Tickets created by and assigned to a user, plus their ten latest actions."""
    await _get_user_or_404(session, user_id)

    res = await session.exec(select(func.count()).select_from(Ticket).where(Ticket.created_by == user_id))
    created_tickets = int(res.one())

    res = await session.exec(select(func.count()).select_from(Ticket).where(Ticket.assigned_to == user_id))
    assigned_tickets = int(res.one())

    res = await session.exec(
        select(Ticket.status, func.count().label("cnt"))
        .where(Ticket.assigned_to == user_id)
        .group_by(Ticket.status)
    )
    status_stats = [TopItem(key=row[0].value, count=int(row[1])) for row in res.all()]

    res = await session.exec(
        select(TicketUpdate, Ticket.ticket_number)
        .join(Ticket, TicketUpdate.ticket_id == Ticket.id)
        .where(TicketUpdate.user_id == user_id)
        .order_by(TicketUpdate.created_at.desc())
        .limit(10)
    )
    recent_activity = [
        UserActivity(**update.model_dump(), ticket_number=ticket_number)
        for update, ticket_number in res.all()
    ]

    return UserStats(
        created_tickets=created_tickets,
        assigned_tickets=assigned_tickets,
        status_stats=status_stats,
        recent_activity=recent_activity,
    )
