from sqlmodel import Field, SQLModel, Text

from utilities.enumerables import TicketUpdateType


class TicketUpdateBase(SQLModel):
    update_type: TicketUpdateType = Field(...)

    old_value: str | None = Field(default=None, max_length=100)
    new_value: str | None = Field(default=None, max_length=100)

    notes: str | None = Field(default=None, sa_type=Text)
