import math

from todo_api.models import Priority, Status, Task, as_utc

# created_at seconds are scaled down before the priority factor is applied
TIME_SCALE = 100_000


def rank_score(task: Task) -> float:
    """
    Score used to order tasks in the Redis sorted set (highest first).

    Done tasks always score 0. Open tasks score their creation time scaled
    by a priority factor, so a recent low priority task can still outrank
    an old high priority one.
    """
    if task.status == Status.DONE:
        return 0.0

    base = math.floor(as_utc(task.created_at).timestamp()) / TIME_SCALE

    if task.priority == Priority.HIGH:
        return base * 3.0
    if task.priority == Priority.MEDIUM:
        return base * 2.0
    return base * 1.0 + 1.0
