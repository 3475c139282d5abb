from datetime import datetime

from sqlmodel import SQLModel

from schemas.relational_schemas import RelationalTicketPublic
from schemas.ticket_update import TicketUpdatePublic


class TopItem(SQLModel):
    key: str | None
    count: int


class DashboardStats(SQLModel):
    total_tickets: int
    status_stats: list[TopItem]
    department_stats: list[TopItem]
    recent_tickets: int
    avg_resolution_hours: float | None = None


class MonthlyPeriod(SQLModel):
    month: int
    year: int


class MonthlyReport(SQLModel):
    period: MonthlyPeriod
    total_tickets: int
    tickets: list[RelationalTicketPublic]
    status_breakdown: list[TopItem]
    department_breakdown: list[TopItem]
    equipment_breakdown: list[TopItem]


class RecurringProblem(SQLModel):
    problem_description: str
    occurrence_count: int
    first_occurrence: datetime
    last_occurrence: datetime


class RecurringProblems(SQLModel):
    recurring_problems: list[RecurringProblem]


class UserActivity(TicketUpdatePublic):
    ticket_number: str


class UserStats(SQLModel):
    created_tickets: int
    assigned_tickets: int
    status_stats: list[TopItem]
    recent_activity: list[UserActivity]
