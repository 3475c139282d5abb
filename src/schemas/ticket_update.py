from datetime import datetime
from uuid import UUID

from schemas.base.ticket_update import TicketUpdateBase


class TicketUpdatePublic(TicketUpdateBase):
    id: UUID
    ticket_id: UUID
    user_id: UUID
    created_at: datetime
