from dataclasses import dataclass
from uuid import UUID

from sqlmodel.sql.expression import SelectOfScalar

from models.relational_models import Ticket, User
from settings import settings
from utilities.enumerables import UserRole


def privileged_roles() -> frozenset[UserRole]:
    """Roles with admin authority. `it` is included only when configured."""
    if settings.it_role_privileged:
        return frozenset({UserRole.ADMIN, UserRole.IT})
    return frozenset({UserRole.ADMIN})


@dataclass(frozen=True)
class Permissions:
    """
    What the current caller may see and do, resolved once per request.

    Every ticket and user operation consults this object instead of comparing
    role strings on its own.
    """

    user_id: UUID
    username: str
    role: UserRole
    department: str
    is_privileged: bool

    @classmethod
    def for_user(cls, user: User) -> "Permissions":
        role = UserRole(user.role)
        return cls(
            user_id=user.id,
            username=user.username,
            role=role,
            department=user.department,
            is_privileged=role in privileged_roles(),
        )

    @property
    def can_change_status(self) -> bool:
        return self.is_privileged

    @property
    def can_assign(self) -> bool:
        return self.is_privileged

    @property
    def can_manage_users(self) -> bool:
        return self.is_privileged

    @property
    def can_view_reports(self) -> bool:
        return self.is_privileged

    @property
    def can_choose_department(self) -> bool:
        return self.is_privileged

    def owns(self, ticket: Ticket) -> bool:
        return str(ticket.created_by) == str(self.user_id)

    def can_view_ticket(self, ticket: Ticket) -> bool:
        return self.is_privileged or self.owns(ticket)

    def can_mutate_ticket(self, ticket: Ticket) -> bool:
        # notes and deletion; status changes go through `can_change_status`
        return self.is_privileged or self.owns(ticket)

    def can_delete_user(self, user_id: UUID) -> bool:
        return self.can_manage_users and str(user_id) != str(self.user_id)

    def scope_tickets(self, query: SelectOfScalar) -> SelectOfScalar:
        """Restrict a ticket query to the rows this caller may see."""
        if self.is_privileged:
            return query
        return query.where(Ticket.created_by == self.user_id)
