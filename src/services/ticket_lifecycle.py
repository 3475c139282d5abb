"""
Ticket lifecycle: creation, status changes, notes, assignment and deletion.

Rules enforced here, before any mutating statement runs:

* a new ticket starts as ``Pending`` and gets its first audit row in the
  same transaction as the insert;
* ``Closed`` is terminal: no status change, note, assignment or deletion;
* every change to a ticket is recorded as an append-only `TicketUpdate`.
"""
import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import func, or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from models.relational_models import Ticket, TicketUpdate, User
from schemas.ticket import TicketCreate, TicketFilters
from services.ticket_number import allocate_ticket_number, current_year, year_lock
from utilities.enumerables import TicketPriority, TicketStatus, TicketUpdateType
from utilities.exceptions import (
    ConflictError,
    FieldValidationError,
    ForbiddenStateError,
    NotFoundError,
    PermissionDeniedError,
)
from utilities.fields_validator import as_utc, resolve_equipment_type, validate_required_text
from utilities.permissions import Permissions, privileged_roles
from utilities.photo_storage import remove_photo


logger = logging.getLogger(__name__)

CREATED_NOTE = "Ticket created"


async def load_ticket(session: AsyncSession, ticket_id: UUID) -> Ticket:
    result = await session.exec(
        select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    )
    return result.one()


async def get_visible_ticket(
    session: AsyncSession,
    ticket_id: UUID,
    perms: Permissions,
    *,
    for_update: bool = False,
) -> Ticket:
    """Fetch a ticket the caller may see; anything else is reported as not found."""
    query = perms.scope_tickets(select(Ticket).where(Ticket.id == ticket_id))
    if for_update:
        query = query.with_for_update()
    result = await session.exec(query)
    ticket = result.one_or_none()
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


def _ensure_open(ticket: Ticket, action: str = "modify") -> None:
    if ticket.status == TicketStatus.CLOSED:
        raise ForbiddenStateError(f"Cannot {action} a closed ticket")


def _is_duplicate_ticket_number(exc: IntegrityError) -> bool:
    # SQLite names the column, PostgreSQL and MySQL the unique index; both mention it
    return "ticket_number" in str(exc.orig)


async def create_ticket(
    session: AsyncSession,
    perms: Permissions,
    data: TicketCreate,
    *,
    year: int | None = None,
) -> Ticket:
    # Only privileged callers pick a department; everyone else files under their own.
    if perms.can_choose_department:
        department = validate_required_text(
            "department", data.department, "Department is required for admin"
        )
    else:
        department = perms.department

    equipment_type = resolve_equipment_type(data.equipment_type)
    problem_description = validate_required_text(
        "problem_description", data.problem_description, "Problem description is required"
    )
    priority = data.priority if perms.is_privileged and data.priority else TicketPriority.MEDIUM

    year = year or current_year()

    async with year_lock(year):
        try:
            ticket_number = await allocate_ticket_number(session, year)
            ticket = Ticket(
                ticket_number=ticket_number,
                department=department,
                equipment_type=equipment_type,
                problem_description=problem_description,
                issue_date=as_utc(data.issue_date),
                photo_url=data.photo_url,
                status=TicketStatus.PENDING,
                priority=priority,
                created_by=perms.user_id,
            )
            session.add(ticket)
            await session.flush()
            new_ticket_id = ticket.id

            session.add(
                TicketUpdate(
                    ticket_id=ticket.id,
                    user_id=perms.user_id,
                    update_type=TicketUpdateType.STATUS_CHANGE,
                    old_value=None,
                    new_value=TicketStatus.PENDING.value,
                    notes=CREATED_NOTE,
                )
            )
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            if not _is_duplicate_ticket_number(exc):
                raise
            logger.warning("Duplicate ticket number generated for year %s", year, exc_info=True)
            raise ConflictError("Duplicate ticket number generated; please retry")
        except Exception:
            await session.rollback()
            raise

    logger.info("Ticket %s created by %s", ticket_number, perms.username)
    return await load_ticket(session, new_ticket_id)


async def list_tickets(
    session: AsyncSession,
    perms: Permissions,
    filters: TicketFilters,
    *,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Ticket], int]:
    """Return one page of the caller's visible tickets plus the total match count."""
    conditions = []

    # created_by is an admin-only filter; regular users are pinned by scope_tickets
    if perms.is_privileged and filters.created_by is not None:
        conditions.append(Ticket.created_by == filters.created_by)
    if filters.status is not None:
        conditions.append(Ticket.status == filters.status)
    if filters.department:
        conditions.append(Ticket.department == filters.department)
    if filters.search and filters.search.strip():
        term = f"%{filters.search.strip()}%"
        conditions.append(
            or_(
                Ticket.ticket_number.ilike(term),
                Ticket.problem_description.ilike(term),
                Ticket.equipment_type.ilike(term),
                Ticket.department.ilike(term),
            )
        )

    count_query = perms.scope_tickets(select(func.count()).select_from(Ticket))
    list_query = perms.scope_tickets(select(Ticket))
    for condition in conditions:
        count_query = count_query.where(condition)
        list_query = list_query.where(condition)

    total = (await session.exec(count_query)).one()

    list_query = (
        list_query.order_by(Ticket.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await session.exec(list_query)
    return list(result.all()), int(total)


async def get_history(
    session: AsyncSession,
    ticket_id: UUID,
    perms: Permissions,
    *,
    newest_first: bool = False,
) -> list[TicketUpdate]:
    await get_visible_ticket(session, ticket_id, perms)

    order = TicketUpdate.created_at.desc() if newest_first else TicketUpdate.created_at.asc()
    result = await session.exec(
        select(TicketUpdate).where(TicketUpdate.ticket_id == ticket_id).order_by(order)
    )
    return list(result.all())


async def change_status(
    session: AsyncSession,
    ticket_id: UUID,
    status: TicketStatus | str,
    notes: str | None,
    perms: Permissions,
) -> Ticket:
    if not perms.can_change_status:
        raise PermissionDeniedError("Only IT staff can change ticket status")

    try:
        new_status = TicketStatus(status)
    except ValueError:
        raise FieldValidationError.single("status", "Invalid status")

    ticket = await get_visible_ticket(session, ticket_id, perms, for_update=True)
    _ensure_open(ticket)

    old_status = TicketStatus(ticket.status)
    ticket_number = ticket.ticket_number
    try:
        ticket.status = new_status
        session.add(ticket)
        session.add(
            TicketUpdate(
                ticket_id=ticket.id,
                user_id=perms.user_id,
                update_type=TicketUpdateType.STATUS_CHANGE,
                old_value=old_status.value,
                new_value=new_status.value,
                notes=notes,
            )
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Ticket %s status %s -> %s by %s",
        ticket_number, old_status.value, new_status.value, perms.username,
    )
    return await load_ticket(session, ticket_id)


async def add_note(
    session: AsyncSession,
    ticket_id: UUID,
    notes: str | None,
    perms: Permissions,
) -> TicketUpdate:
    text = validate_required_text("notes", notes, "Notes are required")

    ticket = await get_visible_ticket(session, ticket_id, perms, for_update=True)
    if not perms.can_mutate_ticket(ticket):
        raise NotFoundError("Ticket not found")
    _ensure_open(ticket)

    update = TicketUpdate(
        ticket_id=ticket.id,
        user_id=perms.user_id,
        update_type=TicketUpdateType.NOTE,
        notes=text,
    )
    update_id = update.id
    try:
        session.add(update)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    result = await session.exec(select(TicketUpdate).where(TicketUpdate.id == update_id))
    return result.one()


async def assign_ticket(
    session: AsyncSession,
    ticket_id: UUID,
    assignee_id: UUID | None,
    notes: str | None,
    perms: Permissions,
) -> Ticket:
    if not perms.can_assign:
        raise PermissionDeniedError("Only IT staff can assign tickets")

    ticket = await get_visible_ticket(session, ticket_id, perms, for_update=True)
    _ensure_open(ticket)

    assignee = None
    if assignee_id is not None:
        assignee = await session.get(User, assignee_id)
        if assignee is None:
            raise NotFoundError("User not found")
        if assignee.role not in privileged_roles():
            raise FieldValidationError.single(
                "assigned_to", "Tickets can only be assigned to IT staff"
            )

    old_name = ticket.assignee.username if ticket.assignee else None
    new_name = assignee.username if assignee else None
    ticket_number = ticket.ticket_number

    try:
        ticket.assigned_to = assignee.id if assignee else None
        session.add(ticket)
        session.add(
            TicketUpdate(
                ticket_id=ticket.id,
                user_id=perms.user_id,
                update_type=TicketUpdateType.ASSIGNMENT,
                old_value=old_name,
                new_value=new_name,
                notes=notes,
            )
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("Ticket %s assigned to %s by %s", ticket_number, new_name, perms.username)
    return await load_ticket(session, ticket_id)


async def delete_ticket(session: AsyncSession, ticket_id: UUID, perms: Permissions) -> None:
    """
    Delete a ticket and, through the foreign-key cascade, its whole history.

    The photo file is removed after the commit and never fails the request.
    """
    ticket = await get_visible_ticket(session, ticket_id, perms, for_update=True)
    if not perms.can_mutate_ticket(ticket):
        raise NotFoundError("Ticket not found")
    _ensure_open(ticket, "delete")

    ticket_number, photo_url = ticket.ticket_number, ticket.photo_url
    try:
        await session.delete(ticket)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    remove_photo(photo_url)
    logger.info("Ticket %s deleted by %s", ticket_number, perms.username)
