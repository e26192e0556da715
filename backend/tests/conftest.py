from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from crm_assistant.auth import hash_token
from crm_assistant.database import Base, get_db
from crm_assistant.main import app
from crm_assistant.models.user import User
from crm_assistant.schemas.assistant import CallerIdentity
from crm_assistant.services.store import CrmStore


@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"

TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"
TEST_TOKEN = "test-token-123"

engine = create_async_engine(TEST_DATABASE_URL)
TestSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


@event.listens_for(engine.sync_engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, _):
    # SQLite ignores foreign keys unless asked, Postgres always enforces them
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> CrmStore:
    return CrmStore(db_session)


@pytest.fixture
async def user(db_session: AsyncSession) -> User:
    user = User(
        email="sam@example.com",
        full_name="Sam Seller",
        api_token_hash=hash_token(TEST_TOKEN),
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def caller(user: User) -> CallerIdentity:
    return CallerIdentity(id=user.id, email=user.email, full_name=user.full_name)


@pytest.fixture
def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def chat_model() -> MagicMock:
    """Stand-in for ClaudeChatClient; tests script ``complete`` replies."""
    model = MagicMock()
    model.complete = AsyncMock()
    model.complete_text = AsyncMock(return_value="Hi, just following up.")
    return model


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
