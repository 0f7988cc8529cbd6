import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_api.core.errors import NotFoundError, StoreError
from todo_api.database import create_db_and_tables
from todo_api.models import Priority, Status, Task, TaskFilter, as_utc
from todo_api.repositories.task_repository import TaskRepository


@pytest.mark.asyncio
async def test_create_assigns_identity_and_timestamps(repository):
    task = await repository.create(Task(description="buy milk", priority=Priority.LOW))

    assert task.id is not None
    assert task.status == Status.CREATED
    assert task.created_at is not None
    assert task.updated_at is not None


@pytest.mark.asyncio
async def test_ids_increase(repository):
    first = await repository.create(Task(description="one", priority=Priority.LOW))
    second = await repository.create(Task(description="two", priority=Priority.LOW))
    assert second.id > first.id


@pytest.mark.asyncio
async def test_find_missing_task(repository):
    with pytest.raises(NotFoundError):
        await repository.find(404)


@pytest.mark.asyncio
async def test_update_changes_description_and_status_only(repository, add_task):
    task = await add_task("draft", Priority.HIGH)
    created_at = as_utc(task.created_at)

    updated = await repository.update(
        Task(
            id=task.id,
            description="final",
            status=Status.PROCESSING,
            priority=Priority.LOW,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
    )

    assert updated.description == "final"
    assert updated.status == Status.PROCESSING
    assert updated.priority == Priority.HIGH
    assert as_utc(updated.created_at) == created_at
    assert as_utc(updated.updated_at) > created_at


@pytest.mark.asyncio
async def test_update_missing_task(repository):
    with pytest.raises(NotFoundError):
        await repository.update(Task(id=99, description="x", priority=Priority.LOW))


@pytest.mark.asyncio
async def test_delete(repository, add_task):
    task = await add_task("temporary")

    await repository.delete(task.id)

    with pytest.raises(NotFoundError):
        await repository.find(task.id)


@pytest.mark.asyncio
async def test_delete_missing_task(repository):
    with pytest.raises(NotFoundError):
        await repository.delete(12345)


@pytest.mark.asyncio
async def test_database_errors_become_store_errors(repository, db, monkeypatch):
    async def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", broken_commit)

    with pytest.raises(StoreError):
        await repository.create(Task(description="lost", priority=Priority.LOW))


@pytest.mark.asyncio
async def test_priority_dominates_recency(repository, add_task):
    a = await add_task("A", Priority.HIGH, created_offset=0)
    b = await add_task("B", Priority.LOW, created_offset=10)

    tasks = await repository.find_all(TaskFilter())

    assert [t.id for t in tasks] == [a.id, b.id]


@pytest.mark.asyncio
async def test_find_all_ordering(repository, add_task):
    done_late = await add_task("done late", Priority.HIGH, Status.DONE, 0, updated_offset=500)
    low = await add_task("low", Priority.LOW, created_offset=100)
    high_old = await add_task("high old", Priority.HIGH, created_offset=0)
    done_early = await add_task("done early", Priority.LOW, Status.DONE, 0, updated_offset=50)
    medium = await add_task("medium", Priority.MEDIUM, Status.PROCESSING, created_offset=300)
    high_new = await add_task("high new", Priority.HIGH, created_offset=200)

    tasks = await repository.find_all(TaskFilter())

    assert [t.id for t in tasks] == [
        high_new.id,
        high_old.id,
        medium.id,
        low.id,
        done_early.id,
        done_late.id,
    ]


@pytest.mark.asyncio
async def test_open_tasks_precede_done_tasks(repository, add_task):
    await add_task("d1", Priority.HIGH, Status.DONE, 900)
    await add_task("o1", Priority.LOW, Status.CREATED, 0)
    await add_task("d2", Priority.MEDIUM, Status.DONE, 50)
    await add_task("o2", Priority.MEDIUM, Status.PROCESSING, 10)

    tasks = await repository.find_all(TaskFilter())
    statuses = [t.status for t in tasks]

    first_done = statuses.index(Status.DONE)
    assert all(s == Status.DONE for s in statuses[first_done:])
    assert Status.DONE not in statuses[:first_done]


@pytest.mark.asyncio
async def test_filter_by_status_and_case_sensitive_substring(repository, add_task):
    late = await add_task("monthly report", Priority.LOW, Status.DONE, 0, updated_offset=300)
    early = await add_task("report to boss", Priority.HIGH, Status.DONE, 0, updated_offset=100)
    await add_task("Report draft", Priority.HIGH, Status.DONE, 0, updated_offset=200)
    await add_task("report review", Priority.HIGH, Status.CREATED)
    await add_task("groceries", Priority.HIGH, Status.DONE)

    tasks = await repository.find_all(TaskFilter(task="report", status=Status.DONE))

    assert [t.id for t in tasks] == [early.id, late.id]


@pytest.mark.asyncio
async def test_filter_treats_like_wildcards_literally(repository, add_task):
    await add_task("100% done")
    await add_task("1000 things")

    tasks = await repository.find_all(TaskFilter(task="0%"))

    assert [t.description for t in tasks] == ["100% done"]


@pytest_asyncio.fixture()
async def two_sessions(tmp_path):
    """Two independent sessions on one file-backed database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}")
    await create_db_and_tables(engine)
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as first, session_factory() as second:
        yield first, second
    await engine.dispose()


@pytest.mark.asyncio
async def test_delete_after_concurrent_delete_is_not_found(two_sessions):
    first, second = two_sessions
    task = await TaskRepository(first).create(Task(description="shared", priority=Priority.LOW))
    await TaskRepository(second).find(task.id)

    await TaskRepository(first).delete(task.id)

    with pytest.raises(NotFoundError):
        await TaskRepository(second).delete(task.id)


@pytest.mark.asyncio
async def test_update_after_concurrent_delete_is_not_found(two_sessions):
    first, second = two_sessions
    task = await TaskRepository(first).create(Task(description="shared", priority=Priority.LOW))
    loaded = await TaskRepository(second).find(task.id)

    await TaskRepository(first).delete(task.id)

    with pytest.raises(NotFoundError):
        await TaskRepository(second).update(
            Task(
                id=loaded.id,
                description="edited",
                status=Status.DONE,
                priority=loaded.priority,
                created_at=loaded.created_at,
                updated_at=loaded.updated_at,
            )
        )
