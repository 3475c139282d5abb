from datetime import datetime, timedelta, timezone
from math import ceil

from fastapi import APIRouter, Depends, Query
from sqlmodel import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from dependencies import get_session, require_capability
from models.relational_models import Ticket, User
from schemas.relational_schemas import RelationalTicketPage
from schemas.stats import (
    DashboardStats,
    MonthlyPeriod,
    MonthlyReport,
    RecurringProblem,
    RecurringProblems,
    TopItem,
)
from schemas.ticket import Pagination
from schemas.user import UserPublic
from utilities.authentication import oauth2_scheme
from utilities.enumerables import TicketStatus
from utilities.fields_validator import as_utc
from utilities.permissions import Permissions, privileged_roles


router = APIRouter(prefix="/stats")

VIEW_REPORTS = Depends(require_capability("can_view_reports"))

RESOLVED_STATUSES = (TicketStatus.DONE, TicketStatus.CLOSED)
RECENT_DAYS = 7
RECURRING_LIMIT = 10


def _key(value) -> str | None:
    return getattr(value, "value", value)


def _month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        return start, datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return start, datetime(year, month + 1, 1, tzinfo=timezone.utc)


async def _breakdown(session: AsyncSession, column, *where) -> list[TopItem]:
    q = select(column, func.count().label("cnt")).select_from(Ticket)
    for clause in where:
        q = q.where(clause)
    q = q.group_by(column).order_by(func.count().desc())
    res = await session.exec(q)
    return [TopItem(key=_key(row[0]), count=int(row[1])) for row in res.all()]


@router.get(
    "/dashboard",
    response_model=DashboardStats,
)
async def get_dashboard_statistics(
    *,
    session: AsyncSession = Depends(get_session),
    _perms: Permissions = VIEW_REPORTS,
    _: str = Depends(oauth2_scheme),
):
    """
    Totals, status and department breakdowns, tickets created in the last
    seven days and the average hours from creation to last update for
    Done/Closed tickets.
    """
    res = await session.exec(select(func.count()).select_from(Ticket))
    total_tickets = int(res.one())

    status_stats = await _breakdown(session, Ticket.status)
    department_stats = await _breakdown(session, Ticket.department)

    since = datetime.now(timezone.utc) - timedelta(days=RECENT_DAYS)
    res = await session.exec(select(func.count()).select_from(Ticket).where(Ticket.created_at >= since))
    recent_tickets = int(res.one())

    # Averaged in Python: interval arithmetic differs across database dialects.
    res = await session.exec(
        select(Ticket.created_at, Ticket.updated_at).where(Ticket.status.in_(RESOLVED_STATUSES))
    )
    durations = [
        (as_utc(updated_at) - as_utc(created_at)).total_seconds() / 3600
        for created_at, updated_at in res.all()
        if created_at is not None and updated_at is not None
    ]
    avg_resolution_hours = round(sum(durations) / len(durations), 2) if durations else None

    return DashboardStats(
        total_tickets=total_tickets,
        status_stats=status_stats,
        department_stats=department_stats,
        recent_tickets=recent_tickets,
        avg_resolution_hours=avg_resolution_hours,
    )


@router.get(
    "/team",
    response_model=list[UserPublic],
)
async def get_team(
    *,
    session: AsyncSession = Depends(get_session),
    _perms: Permissions = VIEW_REPORTS,
    _: str = Depends(oauth2_scheme),
):
    """Users who can be assigned tickets."""
    res = await session.exec(
        select(User).where(User.role.in_(list(privileged_roles()))).order_by(User.username)
    )
    return res.all()


@router.get(
    "/departments",
    response_model=list[str],
)
async def get_departments(
    *,
    session: AsyncSession = Depends(get_session),
    _perms: Permissions = VIEW_REPORTS,
    _: str = Depends(oauth2_scheme),
):
    res = await session.exec(select(User.department).distinct().order_by(User.department))
    return res.all()


@router.get(
    "/report/monthly",
    response_model=MonthlyReport,
)
async def get_monthly_report(
    *,
    session: AsyncSession = Depends(get_session),
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None, ge=2000, le=9999),
    _perms: Permissions = VIEW_REPORTS,
    _: str = Depends(oauth2_scheme),
):
    """Tickets created in a calendar month (default: the current one) with breakdowns."""
    now = datetime.now(timezone.utc)
    month = month or now.month
    year = year or now.year
    start, end = _month_bounds(year, month)
    in_month = (Ticket.created_at >= start, Ticket.created_at < end)

    res = await session.exec(select(Ticket).where(*in_month).order_by(Ticket.created_at.desc()))
    tickets = res.all()

    return {
        "period": MonthlyPeriod(month=month, year=year),
        "total_tickets": len(tickets),
        "tickets": tickets,
        "status_breakdown": await _breakdown(session, Ticket.status, *in_month),
        "department_breakdown": await _breakdown(session, Ticket.department, *in_month),
        "equipment_breakdown": await _breakdown(session, Ticket.equipment_type, *in_month),
    }


@router.get(
    "/my-tickets",
    response_model=RelationalTicketPage,
)
async def get_my_tickets(
    *,
    session: AsyncSession = Depends(get_session),
    status: TicketStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=200),
    perms: Permissions = VIEW_REPORTS,
    _: str = Depends(oauth2_scheme),
):
    """Tickets assigned to the caller."""
    conditions = [Ticket.assigned_to == perms.user_id]
    if status is not None:
        conditions.append(Ticket.status == status)
    return await _ticket_page(session, conditions, page, limit)


@router.get(
    "/unassigned",
    response_model=RelationalTicketPage,
)
async def get_unassigned_tickets(
    *,
    session: AsyncSession = Depends(get_session),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=200),
    _perms: Permissions = VIEW_REPORTS,
    _: str = Depends(oauth2_scheme),
):
    """Open tickets nobody has picked up yet."""
    conditions = [Ticket.assigned_to.is_(None), Ticket.status != TicketStatus.CLOSED]
    return await _ticket_page(session, conditions, page, limit)


async def _ticket_page(session: AsyncSession, conditions: list, page: int, limit: int) -> dict:
    res = await session.exec(select(func.count()).select_from(Ticket).where(*conditions))
    total = int(res.one())

    res = await session.exec(
        select(Ticket)
        .where(*conditions)
        .order_by(Ticket.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "tickets": res.all(),
        "pagination": Pagination(current=page, total=max(1, ceil(total / limit)), total_items=total),
    }


@router.get(
    "/recurring-problems",
    response_model=RecurringProblems,
)
async def get_recurring_problems(
    *,
    session: AsyncSession = Depends(get_session),
    _perms: Permissions = VIEW_REPORTS,
    _: str = Depends(oauth2_scheme),
):
    """Problem descriptions reported more than once, most frequent first."""
    occurrences = func.count().label("occurrence_count")
    res = await session.exec(
        select(
            Ticket.problem_description,
            occurrences,
            func.min(Ticket.created_at).label("first_occurrence"),
            func.max(Ticket.created_at).label("last_occurrence"),
        )
        .group_by(Ticket.problem_description)
        .having(func.count() > 1)
        .order_by(occurrences.desc())
        .limit(RECURRING_LIMIT)
    )
    problems = [
        RecurringProblem(
            problem_description=row[0],
            occurrence_count=int(row[1]),
            first_occurrence=row[2],
            last_occurrence=row[3],
        )
        for row in res.all()
    ]
    return RecurringProblems(recurring_problems=problems)
