"""Error kinds raised by the task service and its stores.

Each kind carries the error code and HTTP status the API layer reports.
"""

CODE_INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
CODE_INVALID_REQUEST = "INVALID_REQUEST"
CODE_NOT_FOUND = "NOT_FOUND"
CODE_BAD_REQUEST = "BAD_REQUEST"


class TodoError(Exception):
    code = CODE_INTERNAL_SERVER_ERROR
    status_code = 500


class ValidationError(TodoError):
    """Malformed create/update input. Raised before either store is touched."""

    code = CODE_INVALID_REQUEST
    status_code = 400


class NotFoundError(TodoError):
    """No task with the requested id exists in the database."""

    code = CODE_NOT_FOUND
    status_code = 404

    def __init__(self, task_id: int):
        super().__init__(f"Task with id {task_id} not found")
        self.task_id = task_id


class StoreError(TodoError):
    """Database I/O failure."""


class CacheError(TodoError):
    """Redis I/O failure or an undecodable cache record."""
