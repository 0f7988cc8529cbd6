from datetime import datetime, timezone
from enum import Enum

from pydantic import field_validator
from sqlalchemy import DateTime, Enum as SAEnum, String
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they were written as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Status(str, Enum):
    CREATED = "created"
    PROCESSING = "processing"
    DONE = "done"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _blank_to_none(value):
    if isinstance(value, str) and value == "":
        return None
    return value


class TaskBase(SQLModel):
    """Base model with shared fields"""

    description: str = Field(min_length=1)
    priority: Priority


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    description: str = Field(sa_column=Column(String, nullable=False))
    status: Status = Field(
        default=Status.CREATED,
        sa_column=Column(
            SAEnum(
                Status,
                native_enum=False,
                length=20,
                values_callable=_enum_values,
            ),
            nullable=False,
        ),
    )
    priority: Priority = Field(
        sa_column=Column(
            SAEnum(
                Priority,
                native_enum=False,
                length=20,
                values_callable=_enum_values,
            ),
            nullable=False,
        ),
    )
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class TaskCreate(TaskBase):
    """Schema for creating a task. Status always starts as created."""

    pass


class TaskUpdate(SQLModel):
    """Schema for updating a task.

    Empty or missing fields keep the current value. Priority cannot be changed.
    """

    description: str | None = None
    status: Status | None = None

    @field_validator("description", "status", mode="before")
    @classmethod
    def blank_means_unset(cls, value):
        return _blank_to_none(value)


class TaskFilter(SQLModel):
    """Filters for listing tasks. A missing filter means no constraint."""

    task: str | None = None
    status: Status | None = None

    @field_validator("task", "status", mode="before")
    @classmethod
    def blank_means_unset(cls, value):
        return _blank_to_none(value)

    def matches(self, task: Task) -> bool:
        # Case-sensitive substring match on the description
        if self.task is not None and self.task not in task.description:
            return False
        if self.status is not None and task.status != self.status:
            return False
        return True


class TaskResponse(TaskBase):
    """Schema for task responses"""

    id: int
    status: Status
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class TaskEnvelope(SQLModel):
    data: TaskResponse


class TaskListEnvelope(SQLModel):
    data: list[TaskResponse]


class ErrorDetail(SQLModel):
    code: str
    message: str


class ErrorEnvelope(SQLModel):
    errors: list[ErrorDetail]
