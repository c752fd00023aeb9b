"""
Test fixtures using async SQLite for fast, isolated tests.
No PostgreSQL, S3 or Redis required for unit tests.

The database lives in a temp file rather than in memory so that the
orchestrator, which opens a fresh session per phase, sees the same data.
"""
import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mediagen.db.base import Base
# Every model must be imported so Base.metadata knows all tables
from mediagen.admin.models import AppSetting  # noqa: F401
from mediagen.auth.models import User
from mediagen.generation.models import GenerationJob  # noqa: F401
from mediagen.idempotency.models import IdempotencyKey  # noqa: F401
from mediagen.ledger.models import LedgerEntry, OperationType  # noqa: F401
from mediagen.ledger.service import credit
from mediagen.media.models import Media  # noqa: F401
from mediagen.media.storage import ObjectStore
from mediagen.core.exceptions import StorageError
from mediagen.payments.models import Purchase  # noqa: F401


class InMemoryObjectStore(ObjectStore):
    """Dict-backed object store; `fail_on` makes selected operations raise."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.fail_on: set[str] = set()

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        if "put" in self.fail_on:
            raise StorageError()
        self.objects[key] = data
        self.content_types[key] = content_type
        return f"https://media.test/{key}"

    async def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageError("Media could not be loaded")
        return self.objects[key]

    async def delete(self, key: str) -> None:
        if "delete" in self.fail_on:
            raise StorageError("Media could not be deleted")
        self.objects.pop(key, None)
        self.content_types.pop(key, None)


async def no_sleep(seconds: float) -> None:
    return None


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """A session on a fresh database for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_user(db: AsyncSession):
    """Create a user; any starting balance is granted through the ledger."""

    async def _make(credits: int = 0, email: str | None = None, is_admin: bool = False) -> User:
        user = User(
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            credits=0,
            is_admin=is_admin,
        )
        db.add(user)
        await db.flush()
        if credits:
            await credit(db, user.id, credits, OperationType.BONUS, description="Test funding")
        await db.commit()
        return user

    return _make


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest_asyncio.fixture
async def http_client():
    """Client whose every request answers 404 unless a test swaps the transport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    yield client
    await client.aclose()
