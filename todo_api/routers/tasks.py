from fastapi import APIRouter, Depends, Query, Response, status

from todo_api.models import (
    ErrorEnvelope,
    TaskCreate,
    TaskEnvelope,
    TaskListEnvelope,
    TaskResponse,
    TaskUpdate,
)
from todo_api.services.task_service import TaskService, get_task_service

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
    responses={500: {"model": ErrorEnvelope}},
)


@router.post(
    "",
    response_model=TaskEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorEnvelope}},
)
async def create_task(
    task_data: TaskCreate, service: TaskService = Depends(get_task_service)
):
    """Create a new task"""
    task = await service.create_task(task_data)
    return TaskEnvelope(data=TaskResponse.model_validate(task))


@router.get("", response_model=TaskListEnvelope)
async def get_tasks(
    task: str | None = Query(default=None, description="Substring of the description"),
    task_status: str | None = Query(
        default=None, alias="status", description="created, processing or done"
    ),
    service: TaskService = Depends(get_task_service),
):
    """List tasks, open ones first"""
    tasks = await service.list_tasks({"task": task, "status": task_status})
    return TaskListEnvelope(data=[TaskResponse.model_validate(t) for t in tasks])


@router.get(
    "/{task_id}",
    response_model=TaskEnvelope,
    responses={404: {"model": ErrorEnvelope}},
)
async def get_task(task_id: int, service: TaskService = Depends(get_task_service)):
    """Get a specific task by ID"""
    task = await service.get_task(task_id)
    return TaskEnvelope(data=TaskResponse.model_validate(task))


@router.put(
    "/{task_id}",
    response_model=TaskEnvelope,
    responses={400: {"model": ErrorEnvelope}, 404: {"model": ErrorEnvelope}},
)
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    service: TaskService = Depends(get_task_service),
):
    task = await service.update_task(task_id, task_data)
    return TaskEnvelope(data=TaskResponse.model_validate(task))


@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorEnvelope}},
)
async def delete_task(task_id: int, service: TaskService = Depends(get_task_service)):
    """Delete a task"""
    await service.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
