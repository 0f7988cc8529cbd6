import logging
from typing import Any, Mapping

from fastapi import Depends
from pydantic import ValidationError as PydanticValidationError
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_api.cache.decorators import absorb_cache_errors
from todo_api.cache.index import CacheIndex, decode_task, get_cache_index, task_key
from todo_api.core.errors import CacheError, ValidationError
from todo_api.database import get_db
from todo_api.models import Priority, Task, TaskCreate, TaskFilter, TaskUpdate
from todo_api.repositories.task_repository import TaskRepository

logger = logging.getLogger(__name__)


def _validate(schema, data: Any):
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


class TaskService:
    """
    Coordinates the database and the Redis index for every task operation.

    The database is authoritative and written first. Cache writes follow and
    are best-effort, except for the cache removal in delete_task and the
    repopulation step in list_tasks, whose failures are raised.
    """

    def __init__(self, repository: TaskRepository, cache: CacheIndex):
        self.repository = repository
        self.cache = cache

    @absorb_cache_errors("read task")
    async def _cache_get(self, key: str):
        return await self.cache.get(key)

    @absorb_cache_errors("store task")
    async def _cache_put(self, task: Task):
        await self.cache.put(task_key(task.id), task)

    @absorb_cache_errors("delete task")
    async def _cache_delete(self, task_id: int):
        await self.cache.delete(task_key(task_id))

    @absorb_cache_errors("flush index")
    async def _cache_flush(self):
        await self.cache.flush_all()

    @absorb_cache_errors("list tasks")
    async def _cache_list(self, filters: TaskFilter):
        return await self.cache.list_all(filters)

    async def create_task(self, data: TaskCreate | Mapping[str, Any]) -> Task:
        payload = _validate(TaskCreate, data)
        # Instances are taken as given, so check them here as well
        if not payload.description:
            raise ValidationError("description cannot be empty")
        if payload.priority not in set(Priority):
            raise ValidationError("invalid priority not accepted")

        task = Task(description=payload.description, priority=Priority(payload.priority))
        task = await self.repository.create(task)

        await self._cache_put(task)

        logger.info(f"Task created successfully with ID: {task.id}")
        return task

    async def get_task(self, task_id: int) -> Task:
        """Read-through: Redis first, then the database."""
        cached = await self._cache_get(task_key(task_id))
        if cached is not None:
            try:
                return decode_task(cached)
            except CacheError as e:
                logger.error(f"Failed to decode cached task {task_id}: {e}")

        task = await self.repository.find(task_id)
        await self._cache_put(task)
        return task

    async def update_task(
        self, task_id: int, patch: TaskUpdate | Mapping[str, Any]
    ) -> Task:
        patch = _validate(TaskUpdate, patch)
        current = await self.get_task(task_id)

        # Priority and created_at always come from the current task
        merged = Task(
            id=task_id,
            description=patch.description or current.description,
            status=patch.status or current.status,
            priority=current.priority,
            created_at=current.created_at,
            updated_at=current.updated_at,
        )
        task = await self.repository.update(merged)

        await self._cache_delete(task_id)
        await self._cache_put(task)

        logger.info(f"Task updated successfully with ID: {task_id}")
        return task

    async def delete_task(self, task_id: int):
        await self.repository.delete(task_id)

        try:
            await self.cache.delete(task_key(task_id))
        except CacheError as e:
            logger.error(f"Failed to delete task {task_id} from Redis: {e}")
            raise

    async def list_tasks(
        self, filters: TaskFilter | Mapping[str, Any] | None = None
    ) -> list[Task]:
        filters = _validate(TaskFilter, filters or {})

        # The index is flushed first, so the lookup below always misses
        # and the listing is served from the database.
        await self._cache_flush()
        cached = await self._cache_list(filters)
        if cached is not None:
            return cached

        tasks = await self.repository.find_all(filters)

        for task in tasks:
            try:
                await self.cache.put(task_key(task.id), task)
            except CacheError as e:
                logger.error(f"Failed to repopulate Redis with task {task.id}: {e}")
                raise

        return tasks


async def get_task_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheIndex = Depends(get_cache_index),
) -> TaskService:
    return TaskService(TaskRepository(db), cache)
