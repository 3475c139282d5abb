from datetime import timedelta, timezone, datetime

import jwt
from fastapi import HTTPException
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from passlib.context import CryptContext
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import or_, select

from models.relational_models import User
from settings import settings

ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes
REFRESH_TOKEN_EXPIRE_MINUTES = settings.refresh_token_expire_minutes

# Password hashing context using PBKDF2-HMAC-SHA512
pwd_context = CryptContext(
    schemes=["pbkdf2_sha512"],
    deprecated="auto",
    pbkdf2_sha512__default_rounds=settings.password_hash_rounds,
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login/")
refresh_header_scheme = APIKeyHeader(name="Authorization-Refresh", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | int | None = None) -> str:

    # copy to avoid mutating the passed dict
    to_encode = data.copy()

    now = datetime.now(timezone.utc)

    # normalize expires_delta to a timedelta
    if isinstance(expires_delta, timedelta):
        delta = expires_delta
    elif isinstance(expires_delta, int):
        # interpret int as minutes
        delta = timedelta(minutes=expires_delta)
    elif expires_delta is None:
        delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    else:
        raise TypeError("expires_delta must be None, int (minutes), or timedelta")

    # int timestamp for 'exp' avoids timezone/serialization edge cases
    to_encode.update({"exp": int((now + delta).timestamp())})

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, verify_exp: bool = True) -> dict:
    """
    Decode and verify a JWT. Raises HTTPException(401) with a readable message on error.
    """
    try:
        options = {"verify_exp": verify_exp}
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm], options=options)

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidSignatureError:
        raise HTTPException(status_code=401, detail="Token signature is invalid")
    except jwt.InvalidAlgorithmError:
        raise HTTPException(status_code=401, detail="Token signing algorithm is not supported")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token is malformed")


def get_password_hash(password: str) -> str:
    """
    Hash a plain password with the configured passlib context.

    Args:
        password (str): The plain password to be hashed.

    Returns:
        str: The hashed version of the provided password.
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Check a plain password against a stored hash.

    Unknown or malformed hashes count as a mismatch rather than an error, so a
    corrupted row can never be used to log in.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


async def authenticate_user(identifier: str, password: str, session: AsyncSession) -> User:
    """Look the user up by username or email and verify the password."""
    result = await session.exec(
        select(User).where(or_(User.username == identifier, User.email == identifier))
    )
    user = result.first()

    if not user or not verify_password(password, user.password):
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials"
        )

    return user
