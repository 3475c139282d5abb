from datetime import datetime, timezone
from uuid import uuid4, UUID

from sqlmodel import Column, DateTime, Field, Relationship, func
from schemas.base.ticket import TicketBase
from schemas.base.ticket_update import TicketUpdateBase
from schemas.base.user import UserBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(UserBase, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)

    password: str = Field(...)

    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), default=_utcnow, server_default=func.now()),
    )

    updated_at: datetime | None = Field(
        sa_column=Column(DateTime(timezone=True), onupdate=func.now()),
    )


class Ticket(TicketBase, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)

    ticket_number: str = Field(max_length=20, unique=True, index=True)

    created_by: UUID = Field(foreign_key="user.id", ondelete="CASCADE", index=True)
    creator: User = Relationship(
        sa_relationship_kwargs={"lazy": "selectin", "foreign_keys": "[Ticket.created_by]"}
    )

    assigned_to: UUID | None = Field(
        default=None, foreign_key="user.id", ondelete="SET NULL", index=True
    )
    assignee: User | None = Relationship(
        sa_relationship_kwargs={"lazy": "selectin", "foreign_keys": "[Ticket.assigned_to]"}
    )

    # Python-side default keeps sub-second ordering on engines whose now() is per-second
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True),
    )

    updated_at: datetime | None = Field(
        sa_column=Column(DateTime(timezone=True), onupdate=func.now()),
    )


class TicketUpdate(TicketUpdateBase, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True)

    ticket_id: UUID = Field(foreign_key="ticket.id", ondelete="CASCADE", index=True)
    user_id: UUID = Field(foreign_key="user.id", ondelete="CASCADE", index=True)
    user: User = Relationship(
        sa_relationship_kwargs={"lazy": "selectin"}
    )

    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True),
    )
