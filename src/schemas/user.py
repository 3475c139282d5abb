from uuid import UUID
from datetime import datetime

from pydantic import EmailStr, field_validator
from sqlmodel import Field, SQLModel

from schemas.base.user import UserBase
from utilities.enumerables import UserRole
from utilities.fields_validator import validate_password_value


class UserPublic(UserBase):
    id: UUID
    created_at: datetime
    updated_at: datetime | None


class UserCreate(UserBase):
    password: str = Field(...)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_value(value)


class UserUpdate(SQLModel):
    username: str | None = Field(default=None, min_length=3, max_length=50)

    email: EmailStr | None = Field(default=None)

    department: str | None = Field(default=None, min_length=1, max_length=100)

    role: UserRole | None = Field(default=None)


class PasswordReset(SQLModel):
    new_password: str = Field(...)

    @field_validator("new_password")
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password_value(value)
