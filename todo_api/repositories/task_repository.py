import logging
from contextlib import asynccontextmanager

from sqlalchemy import case, delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_api.core.errors import NotFoundError, StoreError
from todo_api.models import Priority, Status, Task, TaskFilter, get_utc_now

logger = logging.getLogger(__name__)


class TaskRepository:
    """Database access for tasks. The tasks table is the source of truth."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _store_errors(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise StoreError(f"Failed to {action}") from e

    async def create(self, task: Task) -> Task:
        async with self._store_errors("create task"):
            self.db.add(task)
            await self.db.commit()
            await self.db.refresh(task)
        return task

    async def find(self, task_id: int) -> Task:
        async with self._store_errors(f"find task {task_id}"):
            task = await self.db.get(Task, task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    async def update(self, task: Task) -> Task:
        """Persist description and status of ``task``; bumps updated_at."""
        async with self._store_errors(f"update task {task.id}"):
            result = await self.db.execute(
                update(Task)
                .where(Task.id == task.id)
                .values(
                    description=task.description,
                    status=task.status,
                    updated_at=get_utc_now(),
                )
            )
            if result.rowcount == 0:
                await self.db.rollback()
                raise NotFoundError(task.id)
            await self.db.commit()
            row = await self.db.get(Task, task.id, populate_existing=True)
        if row is None:
            raise NotFoundError(task.id)
        return row

    async def delete(self, task_id: int):
        async with self._store_errors(f"delete task {task_id}"):
            result = await self.db.execute(delete(Task).where(Task.id == task_id))
            if result.rowcount == 0:
                await self.db.rollback()
                raise NotFoundError(task_id)
            await self.db.commit()
        logger.info(f"Deleted task with id: {task_id}")

    async def find_all(self, filters: TaskFilter) -> list[Task]:
        """
        List tasks matching ``filters``.

        Ordering:
        1. Open tasks (status != done) before done tasks
        2. Open tasks by priority (high, medium, low), then newest first
        3. Done tasks by updated_at, oldest first
        """
        is_done = Task.status == Status.DONE
        is_open = Task.status != Status.DONE
        priority_rank = case(
            (Task.priority == Priority.HIGH, 1),
            (Task.priority == Priority.MEDIUM, 2),
            (Task.priority == Priority.LOW, 3),
            else_=4,
        )

        query = select(Task)
        if filters.task is not None:
            query = query.where(Task.description.contains(filters.task, autoescape=True))
        if filters.status is not None:
            query = query.where(Task.status == filters.status)
        query = query.order_by(
            case((is_done, 1), else_=0).asc(),
            case((is_open, priority_rank)).asc(),
            case((is_open, Task.created_at)).desc(),
            case((is_done, Task.updated_at)).asc(),
            Task.id.asc(),
        )

        async with self._store_errors("list tasks"):
            result = await self.db.exec(query)
            tasks = result.all()

        # LIKE is case-insensitive on SQLite, so re-check the substring here
        return [task for task in tasks if filters.matches(task)]
