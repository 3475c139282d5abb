from datetime import datetime
from uuid import UUID

from sqlmodel import Field, SQLModel

from schemas.base.ticket import TicketBase
from utilities.enumerables import EquipmentType, TicketPriority, TicketStatus


class TicketPublic(TicketBase):
    id: UUID
    ticket_number: str
    created_by: UUID
    assigned_to: UUID | None
    created_at: datetime
    updated_at: datetime | None


class TicketCreate(SQLModel):
    # Ignored for regular users; their profile department is used instead
    department: str | None = Field(default=None, max_length=100)

    equipment_type: EquipmentType = Field(...)
    problem_description: str = Field(...)
    issue_date: datetime = Field(...)

    priority: TicketPriority | None = Field(default=None)
    photo_url: str | None = Field(default=None)


class TicketFilters(SQLModel):
    status: TicketStatus | None = None
    department: str | None = None
    search: str | None = None
    created_by: UUID | None = None


class TicketStatusUpdate(SQLModel):
    status: TicketStatus = Field(...)
    notes: str | None = Field(default=None)


class TicketNoteCreate(SQLModel):
    notes: str = Field(..., min_length=1)


class TicketAssignmentUpdate(SQLModel):
    # null clears the assignment
    assigned_to: UUID | None = Field(default=None)
    notes: str | None = Field(default=None)


class Pagination(SQLModel):
    current: int
    total: int
    total_items: int
