import os
import tempfile
from types import SimpleNamespace

# Configure the app before any of its modules read settings
_scratch = tempfile.mkdtemp(prefix="helpdesk-tests-")
os.environ.setdefault("HELPDESK_DATABASE_URL", f"sqlite+aiosqlite:///{_scratch}/unused.db")
os.environ.setdefault("HELPDESK_UPLOAD_DIR", os.path.join(_scratch, "uploads"))
os.environ.setdefault("HELPDESK_SECRET_KEY", "test-secret-key")
os.environ.setdefault("HELPDESK_PASSWORD_HASH_ROUNDS", "1000")
os.environ.setdefault("HELPDESK_BOOTSTRAP_ADMIN", "false")

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config import app
from database import enable_sqlite_foreign_keys
from dependencies import get_session
from models.relational_models import User
from services import ticket_number
from utilities import photo_storage
from utilities.authentication import create_access_token, get_password_hash
from utilities.enumerables import UserRole


PASSWORD = "secret123"


@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}")
    enable_sqlite_foreign_keys(test_engine)
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def session(engine):
    async with AsyncSession(engine) as db_session:
        yield db_session


@pytest.fixture(autouse=True)
def upload_dir():
    # the same directory `/uploads` is mounted on
    path = photo_storage.upload_dir()
    for leftover in path.iterdir():
        leftover.unlink()
    return path


@pytest.fixture(autouse=True)
def fresh_year_locks():
    # asyncio locks bind to the loop that first waits on them
    ticket_number._year_locks.clear()
    yield
    ticket_number._year_locks.clear()


@pytest.fixture
async def client(engine):
    async def override_get_session():
        async with AsyncSession(engine) as db_session:
            yield db_session

    app.dependency_overrides[get_session] = override_get_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user_id, role: UserRole) -> dict[str, str]:
    token = create_access_token({"sub": str(user_id), "role": role.value, "token_type": "access"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(engine):
    async def _make(username: str, role: UserRole = UserRole.USER, department: str = "Sales"):
        async with AsyncSession(engine) as db_session:
            user = User(
                username=username,
                email=f"{username}@company.com",
                department=department,
                role=role,
                password=get_password_hash(PASSWORD),
            )
            user_id = user.id
            db_session.add(user)
            await db_session.commit()

        return SimpleNamespace(
            id=user_id,
            username=username,
            role=role,
            department=department,
            headers=auth_headers(user_id, role),
        )

    return _make


@pytest.fixture
async def alice(make_user):
    return await make_user("alice", department="Sales")


@pytest.fixture
async def bob(make_user):
    return await make_user("bob", department="Finance")


@pytest.fixture
async def admin(make_user):
    return await make_user("admin", role=UserRole.ADMIN, department="IT Department")


@pytest.fixture
async def it_staff(make_user):
    return await make_user("ivan", role=UserRole.IT, department="IT Department")


@pytest.fixture
def file_ticket(client):
    """Create a ticket over HTTP and return the JSON body."""
    async def _file(user, **fields):
        data = {
            "equipment_type": "PC",
            "problem_description": "Monitor stays black after boot",
            "issue_date": "2025-03-10T09:30:00",
        }
        data.update(fields.pop("data", {}))
        response = await client.post("/tickets/", data=data, headers=user.headers, **fields)
        assert response.status_code == 201, response.text
        return response.json()

    return _file
