import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_api.cache.index import CacheIndex
from todo_api.core.config import Settings
from todo_api.database import create_db_and_tables
from todo_api.models import Priority, Status, Task
from todo_api.repositories.task_repository import TaskRepository
from todo_api.services.task_service import TaskService

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class BrokenRedis:
    """
    Redis stand-in whose every command fails like a refused connection.

    Records the name of each command attempted so tests can assert which
    writes were tried.
    """

    def __init__(self):
        self.calls: list[str] = []

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            self.calls.append(name)
            raise RedisConnectionError(f"{name}: connection refused")

        return fail


class HungRedis:
    """Redis stand-in whose every command stalls without answering."""

    def __init__(self):
        self.calls: list[str] = []

    def __getattr__(self, name):
        async def stall(*args, **kwargs):
            self.calls.append(name)
            await asyncio.sleep(3600)

        return stall


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, cache_op_timeout_seconds=1.0)


@pytest_asyncio.fixture()
async def redis():
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture()
def cache(redis, settings) -> CacheIndex:
    return CacheIndex(redis=redis, settings=settings)


@pytest.fixture()
def broken_redis() -> BrokenRedis:
    return BrokenRedis()


@pytest.fixture()
def broken_cache(broken_redis, settings) -> CacheIndex:
    return CacheIndex(redis=broken_redis, settings=settings)


@pytest.fixture()
def hung_redis() -> HungRedis:
    return HungRedis()


@pytest.fixture()
def hung_cache(hung_redis) -> CacheIndex:
    short_timeout = Settings(_env_file=None, cache_op_timeout_seconds=0.05)
    return CacheIndex(redis=hung_redis, settings=short_timeout)


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db(engine):
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture()
def repository(db) -> TaskRepository:
    return TaskRepository(db)


@pytest.fixture()
def service(repository, cache) -> TaskService:
    return TaskService(repository, cache)


@pytest.fixture()
def broken_service(repository, broken_cache) -> TaskService:
    """Service sharing the test database but with Redis down."""
    return TaskService(repository, broken_cache)


@pytest.fixture()
def hung_service(repository, hung_cache) -> TaskService:
    """Service sharing the test database but with Redis unresponsive."""
    return TaskService(repository, hung_cache)


@pytest.fixture()
def add_task(repository):
    """Insert a task row with explicit timestamps, bypassing the service."""

    async def _add(
        description: str,
        priority: Priority = Priority.MEDIUM,
        status: Status = Status.CREATED,
        created_offset: int = 0,
        updated_offset: int | None = None,
    ) -> Task:
        created_at = BASE_TIME + timedelta(seconds=created_offset)
        updated_at = BASE_TIME + timedelta(
            seconds=created_offset if updated_offset is None else updated_offset
        )
        task = Task(
            description=description,
            priority=priority,
            status=status,
            created_at=created_at,
            updated_at=updated_at,
        )
        return await repository.create(task)

    return _add
