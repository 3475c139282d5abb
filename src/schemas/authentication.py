from uuid import UUID

from sqlmodel import SQLModel

from utilities.enumerables import UserRole


class TokenPair(SQLModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LoginResponse(TokenPair):
    user_id: UUID
    username: str
    user_role: UserRole
    department: str
    access_expires_in: int
    refresh_expires_in: int
