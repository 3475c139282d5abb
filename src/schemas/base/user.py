from pydantic import EmailStr
from sqlmodel import Field, SQLModel

from utilities.enumerables import UserRole


class UserBase(SQLModel):
    username: str = Field(
        unique=True,
        index=True,
        min_length=3,
        max_length=50,
    )

    email: EmailStr = Field(unique=True, index=True, max_length=100)

    department: str = Field(min_length=1, max_length=100, index=True)

    role: UserRole = Field(default=UserRole.USER, index=True)
