from sqlmodel import SQLModel

from schemas.ticket import Pagination, TicketPublic
from schemas.ticket_update import TicketUpdatePublic
from schemas.user import UserPublic


class RelationalTicketPublic(TicketPublic):
    creator: UserPublic | None = None
    assignee: UserPublic | None = None


class RelationalTicketUpdatePublic(TicketUpdatePublic):
    user: UserPublic | None = None


class RelationalTicketDetail(SQLModel):
    ticket: RelationalTicketPublic
    updates: list[RelationalTicketUpdatePublic] = []


class RelationalTicketHistory(SQLModel):
    updates: list[RelationalTicketUpdatePublic] = []


class RelationalTicketPage(SQLModel):
    tickets: list[RelationalTicketPublic] = []
    pagination: Pagination
