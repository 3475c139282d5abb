from datetime import datetime
from math import ceil
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlmodel.ext.asyncio.session import AsyncSession

from dependencies import get_permissions, get_session
from schemas.relational_schemas import (
    RelationalTicketDetail,
    RelationalTicketHistory,
    RelationalTicketPage,
    RelationalTicketPublic,
    RelationalTicketUpdatePublic,
)
from schemas.ticket import (
    Pagination,
    TicketAssignmentUpdate,
    TicketCreate,
    TicketFilters,
    TicketNoteCreate,
    TicketStatusUpdate,
)
from services import ticket_lifecycle
from utilities.authentication import oauth2_scheme
from utilities.enumerables import EquipmentType, TicketPriority, TicketStatus
from utilities.permissions import Permissions
from utilities.photo_storage import remove_photo, save_photo

router = APIRouter()


@router.post(
    "/tickets/",
    response_model=RelationalTicketPublic,
    status_code=status.HTTP_201_CREATED,
)
async def create_ticket(
    *,
    session: AsyncSession = Depends(get_session),
    equipment_type: EquipmentType = Form(...),
    problem_description: str = Form(...),
    issue_date: datetime = Form(...),
    department: str | None = Form(None, max_length=100),
    priority: TicketPriority | None = Form(None),
    photo: UploadFile | None = File(None),
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """
    File a new ticket (multipart form, optional `photo`).

    - Regular users always file under their own department; a submitted
      `department` is ignored.
    - Admin/IT must supply `department` and may set `priority`.
    - The ticket starts as Pending and gets a `TKT<year><seq>` number.
    """
    photo_url = None
    if photo is not None and photo.filename:
        photo_url = await save_photo(photo)

    ticket_create = TicketCreate(
        department=department,
        equipment_type=equipment_type,
        problem_description=problem_description,
        issue_date=issue_date,
        priority=priority,
        photo_url=photo_url,
    )

    try:
        return await ticket_lifecycle.create_ticket(session, perms, ticket_create)
    except Exception:
        # the ticket never made it in; don't leave the upload behind
        remove_photo(photo_url)
        raise


@router.get(
    "/tickets/",
    response_model=RelationalTicketPage,
)
async def list_tickets(
    *,
    session: AsyncSession = Depends(get_session),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=200),
    status: TicketStatus | None = None,
    department: str | None = None,
    search: str | None = None,
    created_by: UUID | None = None,
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """
    List tickets, newest first.
    - Admin/IT: all tickets, optionally filtered by creator, status, department or free text.
    - Users: only their own tickets, whatever filters are passed.
    """
    filters = TicketFilters(status=status, department=department, search=search, created_by=created_by)
    tickets, total = await ticket_lifecycle.list_tickets(session, perms, filters, page=page, limit=limit)

    return {
        "tickets": tickets,
        "pagination": Pagination(
            current=page,
            total=max(1, ceil(total / limit)),
            total_items=total,
        ),
    }


@router.get(
    "/tickets/{ticket_id}",
    response_model=RelationalTicketDetail,
)
async def get_ticket(
    *,
    session: AsyncSession = Depends(get_session),
    ticket_id: UUID,
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """Retrieve a ticket together with its updates, newest first."""
    ticket = await ticket_lifecycle.get_visible_ticket(session, ticket_id, perms)
    updates = await ticket_lifecycle.get_history(session, ticket_id, perms, newest_first=True)
    return {"ticket": ticket, "updates": updates}


@router.get(
    "/tickets/{ticket_id}/history",
    response_model=RelationalTicketHistory,
)
async def get_ticket_history(
    *,
    session: AsyncSession = Depends(get_session),
    ticket_id: UUID,
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """Full audit trail of a ticket in the order it happened."""
    updates = await ticket_lifecycle.get_history(session, ticket_id, perms)
    return {"updates": updates}


@router.put(
    "/tickets/{ticket_id}/status",
    response_model=RelationalTicketPublic,
)
async def update_ticket_status(
    *,
    session: AsyncSession = Depends(get_session),
    ticket_id: UUID,
    status_update: TicketStatusUpdate,
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """Admin/IT only. Closed tickets cannot change status any more."""
    return await ticket_lifecycle.change_status(
        session, ticket_id, status_update.status, status_update.notes, perms
    )


@router.post(
    "/tickets/{ticket_id}/notes",
    response_model=RelationalTicketUpdatePublic,
    status_code=status.HTTP_201_CREATED,
)
async def add_ticket_note(
    *,
    session: AsyncSession = Depends(get_session),
    ticket_id: UUID,
    note: TicketNoteCreate,
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    return await ticket_lifecycle.add_note(session, ticket_id, note.notes, perms)


@router.put(
    "/tickets/{ticket_id}/assignment",
    response_model=RelationalTicketPublic,
)
async def assign_ticket(
    *,
    session: AsyncSession = Depends(get_session),
    ticket_id: UUID,
    assignment: TicketAssignmentUpdate,
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """Assign a ticket to an admin/IT user, or clear the assignment with `null`."""
    return await ticket_lifecycle.assign_ticket(
        session, ticket_id, assignment.assigned_to, assignment.notes, perms
    )


@router.delete(
    "/tickets/{ticket_id}",
    response_model=dict[str, str],
)
async def delete_ticket(
    *,
    session: AsyncSession = Depends(get_session),
    ticket_id: UUID,
    perms: Permissions = Depends(get_permissions),
    _: str = Depends(oauth2_scheme),
):
    """
    Delete a ticket.
    - Admin/IT: any ticket that is not Closed.
    - Users: only their own tickets that are not Closed.
    """
    await ticket_lifecycle.delete_ticket(session, ticket_id, perms)
    return {"msg": "Ticket successfully deleted"}
