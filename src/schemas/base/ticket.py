from datetime import datetime

from sqlmodel import DateTime, Field, SQLModel, Text

from utilities.enumerables import TicketPriority, TicketStatus


class TicketBase(SQLModel):
    department: str = Field(..., max_length=100, index=True)

    # Stored as plain text so `equipment_type_policy = "widen"` can keep edge-only values
    equipment_type: str = Field(..., max_length=50, index=True)

    problem_description: str = Field(..., sa_type=Text)

    issue_date: datetime = Field(..., sa_type=DateTime(timezone=True))

    photo_url: str | None = Field(default=None, max_length=255)

    status: TicketStatus = Field(default=TicketStatus.PENDING, index=True)
    priority: TicketPriority = Field(default=TicketPriority.MEDIUM, index=True)
