"""
Year-scoped, sequential ticket numbers: ``TKT<year><sequence>``.

The sequence is zero-padded to four digits and simply grows past 9999.
Allocation must run inside the transaction that inserts the ticket, while
holding `year_lock(year)`; the highest row of the year is also read
``FOR UPDATE`` so other processes sharing the database serialize on it.
"""
import asyncio
import logging
from datetime import datetime

from sqlmodel import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from models.relational_models import Ticket


logger = logging.getLogger(__name__)

TICKET_NUMBER_PREFIX = "TKT"
SEQUENCE_WIDTH = 4

_year_locks: dict[int, asyncio.Lock] = {}


def current_year() -> int:
    return datetime.now().year


def year_lock(year: int) -> asyncio.Lock:
    """In-process lock serializing ticket creation for one calendar year."""
    lock = _year_locks.get(year)
    if lock is None:
        lock = _year_locks.setdefault(year, asyncio.Lock())
    return lock


def year_prefix(year: int) -> str:
    return f"{TICKET_NUMBER_PREFIX}{year:04d}"


def format_ticket_number(year: int, sequence: int) -> str:
    return f"{year_prefix(year)}{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(ticket_number: str, year: int) -> int | None:
    """Return the numeric suffix of `ticket_number` for `year`, or None if it doesn't parse."""
    prefix = year_prefix(year)
    if not ticket_number or not ticket_number.startswith(prefix):
        return None
    suffix = ticket_number[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def next_sequence(last_ticket_number: str | None, year: int) -> int:
    if last_ticket_number is None:
        return 1
    parsed = parse_sequence(last_ticket_number, year)
    if parsed is None:
        # Corrupted data must not block ticket creation; restart the year's count.
        logger.warning(
            "Unparsable ticket number %r for %s; falling back to sequence 1",
            last_ticket_number,
            year,
        )
        return 1
    return parsed + 1


async def allocate_ticket_number(session: AsyncSession, year: int) -> str:
    """
    Compute the next ticket number for `year` within the caller's open transaction.

    The highest number is chosen by length first so ``TKT202510000`` ranks
    above ``TKT20259999``.
    """
    prefix = year_prefix(year)
    statement = (
        select(Ticket.ticket_number)
        .where(Ticket.ticket_number.startswith(prefix))
        .order_by(func.length(Ticket.ticket_number).desc(), Ticket.ticket_number.desc())
        .limit(1)
        .with_for_update()
    )
    result = await session.exec(statement)
    last = result.first()
    return format_ticket_number(year, next_sequence(last, year))
