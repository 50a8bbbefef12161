import os
import tempfile

# Set environment variables BEFORE any imports that might use settings
_test_db_dir = tempfile.mkdtemp()
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_test_db_dir, 'import.db')}"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret-min-32-characters-long"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-min-32-characters-long"
os.environ["CSRF_SECRET"] = "test-csrf-secret-min-32-characters-long-xx"
os.environ["ALGORITHM"] = "HS256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from quakewatch.core.config import settings
from quakewatch.core.csrf import CSRF_HEADER
from quakewatch.core.security import PasswordHasher
from quakewatch.db.base import Base
from quakewatch.db.models.user import User as UserModel
from quakewatch.domain.permissions import Role
from quakewatch.main import create_app

API = "/api/v1"
DEFAULT_PASSWORD = "Passw0rd!"


class OutboxMailer:
    """Collects password reset emails instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def __call__(self, email: str, reset_token: str) -> None:
        self.sent.append((email, reset_token))

    def last_token_for(self, email: str) -> str:
        return [token for to, token in self.sent if to == email][-1]


@pytest.fixture
def test_settings(tmp_path):
    return settings.model_copy(
        update={"database_url": f"sqlite:///{tmp_path / 'test.db'}"}
    )


@pytest.fixture
def outbox() -> OutboxMailer:
    return OutboxMailer()


@pytest_asyncio.fixture
async def app(test_settings, outbox):
    """Create a fresh app and database for each test."""
    app = create_app(test_settings, send_reset_email=outbox)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def anonymous_client(app):
    """Client without a CSRF token, for exercising CSRF protection."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def client(app):
    """Client that echoes a valid CSRF token on every request."""
    transport = ASGITransport(app=app)
    headers = {CSRF_HEADER: app.state.csrf.issue()}
    async with AsyncClient(transport=transport, base_url="http://test", headers=headers) as ac:
        yield ac


async def create_user(
    app,
    email: str,
    password: str = DEFAULT_PASSWORD,
    role: Role = Role.user,
    is_active: bool = True,
) -> dict:
    hasher = PasswordHasher(rounds=4)
    async with app.state.session_factory() as session:
        user = UserModel(
            email=email,
            first_name="Test",
            last_name=role.value.capitalize(),
            password_hash=hasher.hash(password),
            role=role,
            is_active=is_active,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return {"id": str(user.id), "email": email, "password": password, "role": role.value}


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin_user(app) -> dict:
    return await create_user(app, "admin@example.com", "AdminPass123!", role=Role.admin)


@pytest_asyncio.fixture
async def moderator_user(app) -> dict:
    return await create_user(app, "moderator@example.com", "ModPass123!", role=Role.moderator)


@pytest_asyncio.fixture
async def regular_user(app) -> dict:
    return await create_user(app, "user@example.com", "UserPass123!", role=Role.user)


def access_token_for(app, user: dict) -> str:
    return app.state.tokens.issue_access(user["id"], user["email"], user["role"])


@pytest.fixture
def admin_token(app, admin_user: dict) -> str:
    return access_token_for(app, admin_user)


@pytest.fixture
def moderator_token(app, moderator_user: dict) -> str:
    return access_token_for(app, moderator_user)


@pytest.fixture
def user_token(app, regular_user: dict) -> str:
    return access_token_for(app, regular_user)
