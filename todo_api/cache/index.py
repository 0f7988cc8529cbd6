import asyncio
import base64
import binascii
import logging
from datetime import datetime

from redis.asyncio import Redis, RedisError

from todo_api.cache.ranking import rank_score
from todo_api.core.config import Settings, get_settings
from todo_api.core.errors import CacheError
from todo_api.models import Priority, Status, Task, TaskFilter, as_utc

logger = logging.getLogger(__name__)

RANK_KEY = "tasks_sorted"
TASK_KEY_PREFIX = "task:"


def task_key(task_id: int) -> str:
    return f"{TASK_KEY_PREFIX}{task_id}"


def encode_member(key: str) -> str:
    """Sorted set members are the base64 form of the record key."""
    return base64.b64encode(key.encode("utf-8")).decode("ascii")


def decode_member(member: str) -> str:
    return base64.b64decode(member, validate=True).decode("utf-8")


def encode_task(task: Task) -> dict[str, str]:
    return {
        "Id": str(task.id),
        "Description": task.description,
        "Status": Status(task.status).value,
        "Priority": Priority(task.priority).value,
        "CreatedAt": as_utc(task.created_at).isoformat(),
        "UpdatedAt": as_utc(task.updated_at).isoformat(),
    }


def decode_task(fields: dict[str, str]) -> Task:
    """Rebuild a Task from a cache record; raises CacheError if it is malformed."""
    try:
        return Task(
            id=int(fields["Id"]),
            description=fields["Description"],
            status=Status(fields["Status"]),
            priority=Priority(fields["Priority"]),
            created_at=datetime.fromisoformat(fields["CreatedAt"]),
            updated_at=datetime.fromisoformat(fields["UpdatedAt"]),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise CacheError(f"Undecodable cache record: {e!r}") from e


class CacheIndex:
    """
    Redis projection of the tasks table.

    Layout:
    - ``task:<id>``: hash with the task fields as strings
    - ``tasks_sorted``: sorted set of base64 record keys scored by rank_score

    The index is never authoritative. Records may be stale, missing or
    orphaned, and the whole index can be flushed at any time.

    Every Redis command is bounded by ``cache_op_timeout_seconds`` and any
    failure is raised as CacheError. Deciding whether a failure matters is
    left to the caller.
    """

    def __init__(self, redis: Redis | None = None, settings: Settings | None = None):
        self._settings = settings
        self._redis = redis
        self._initialized = False

        # Stats tracking
        self.stats = {
            "hits": 0,
            "misses": 0,
            "errors": 0,
            "orphans_skipped": 0,
        }

    async def init_cache(self):
        """Initialize settings and the Redis connection pool."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()

        settings = self._settings

        if self._redis is None:
            self._redis = Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_timeout=settings.redis_socket_timeout,
                socket_keepalive=True,
                health_check_interval=30,
            )

        self._initialized = True

        try:
            await self._call("PING", None, self._redis.ping())
            logger.info("Redis connection established")
        except CacheError as e:
            # Degraded: every call fails with CacheError until Redis is back
            logger.error(f"Redis initialization failed: {e}")

        logger.info("Cache index initialized")

    async def _call(self, command: str, key: str | None, awaitable):
        try:
            return await asyncio.wait_for(
                awaitable, timeout=self._settings.cache_op_timeout_seconds
            )
        except (RedisError, asyncio.TimeoutError) as e:
            self.stats["errors"] += 1
            raise CacheError(f"Redis {command} failed for {key}: {e!r}") from e

    async def get(self, key: str) -> dict[str, str] | None:
        """
        Fetch the raw record stored at ``key``.

        Returns:
            The field map, or None when no record exists
        """
        await self.init_cache()

        fields = await self._call("HGETALL", key, self._redis.hgetall(key))
        if not fields:
            self.stats["misses"] += 1
            logger.debug(f"Cache miss for {key}")
            return None

        self.stats["hits"] += 1
        return fields

    async def put(self, key: str, task: Task):
        """
        Write the task record and upsert its rank entry.

        Both writes are attempted even if the first one fails.
        """
        await self.init_cache()

        score = rank_score(task)
        member = encode_member(key)
        failures: list[CacheError] = []

        try:
            await self._call(
                "HSET", key, self._redis.hset(key, mapping=encode_task(task))
            )
        except CacheError as e:
            failures.append(e)

        try:
            await self._call(
                "ZADD", RANK_KEY, self._redis.zadd(RANK_KEY, {member: score})
            )
        except CacheError as e:
            failures.append(e)

        if failures:
            raise failures[0]

        logger.debug(f"Stored {key} with score {score}")

    async def delete(self, key: str):
        """
        Delete the record at ``key``.

        The rank entry is left behind; list_all skips entries whose record
        is gone.
        """
        await self.init_cache()

        await self._call("DEL", key, self._redis.delete(key))
        logger.debug(f"Deleted {key}")

    async def list_all(self, filters: TaskFilter | None = None) -> list[Task] | None:
        """
        Resolve the rank index into tasks, highest score first.

        Returns:
            The matching tasks, or None when the rank index is empty
        """
        await self.init_cache()

        members = await self._call(
            "ZREVRANGE", RANK_KEY, self._redis.zrevrange(RANK_KEY, 0, -1)
        )
        if not members:
            self.stats["misses"] += 1
            return None

        tasks = []
        resolved = 0
        for member in members:
            try:
                key = decode_member(member)
            except (binascii.Error, UnicodeDecodeError):
                logger.warning(f"Skipping malformed rank entry {member!r}")
                continue

            try:
                fields = await self._call("HGETALL", key, self._redis.hgetall(key))
                if not fields:
                    self.stats["orphans_skipped"] += 1
                    logger.debug(f"Skipping orphaned rank entry for {key}")
                    continue
                task = decode_task(fields)
            except CacheError as e:
                logger.error(f"Error fetching {key} from Redis: {e}")
                continue

            resolved += 1
            if filters is None or filters.matches(task):
                tasks.append(task)

        # Nothing behind the rank entries resolved
        if resolved == 0:
            self.stats["misses"] += 1
            return tasks

        self.stats["hits"] += 1
        return tasks

    async def flush_all(self):
        """Drop every task record and the rank index."""
        await self.init_cache()

        pattern = f"{TASK_KEY_PREFIX}*"
        cursor = 0
        deleted_count = 0

        while True:
            cursor, keys = await self._call(
                "SCAN", pattern, self._redis.scan(cursor, match=pattern, count=100)
            )
            if keys:
                await self._call("DEL", pattern, self._redis.delete(*keys))
                deleted_count += len(keys)
            if cursor == 0:
                break

        await self._call("DEL", RANK_KEY, self._redis.delete(RANK_KEY))
        logger.debug(f"Cache flushed, {deleted_count} task records removed")

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")

    def get_stats(self) -> dict:
        total = self.stats["hits"] + self.stats["misses"]
        return {
            **self.stats,
            "hit_rate": self.stats["hits"] / total if total > 0 else 0,
        }


# Cache index instance (singleton per worker)
cache_index = CacheIndex()


def get_cache_index() -> CacheIndex:
    return cache_index
