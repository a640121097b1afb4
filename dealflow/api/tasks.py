"""API routes for tasks."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import SessionDep, StaffDep
from ..models import TaskStatus
from ..realtime import GatewayDep, OutboxDep, commit_and_publish
from ..schemas import ApiResponse, PageMeta, TaskCreate, TaskResponse, TaskUpdate
from ..services import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])


def get_task_service(session: SessionDep, outbox: OutboxDep) -> TaskService:
    return TaskService(session, outbox)


TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]


@router.post("", response_model=ApiResponse[TaskResponse], status_code=status.HTTP_201_CREATED)
async def create_task(
    data: TaskCreate,
    current_user: StaffDep,
    service: TaskServiceDep,
    gateway: GatewayDep,
):
    task = await service.create_task(data, current_user.user)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(message="Task created successfully", data=TaskResponse.model_validate(task))


@router.get("", response_model=ApiResponse[list[TaskResponse]])
async def list_tasks(
    current_user: StaffDep,
    service: TaskServiceDep,
    task_status: TaskStatus | None = Query(None, alias="status"),
    lead_id: UUID | None = Query(None, alias="lead"),
    assign_to_id: UUID | None = Query(None, alias="assignTo"),
    search: str | None = Query(None, alias="searchTerm"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    tasks, total = await service.list_tasks(
        current_user.user,
        status=task_status,
        lead_id=lead_id,
        assign_to_id=assign_to_id,
        search=search,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        message="Tasks retrieved successfully",
        meta=PageMeta.create(total=total, page=page, limit=limit),
        data=[TaskResponse.model_validate(t) for t in tasks],
    )


@router.get("/{task_id}", response_model=ApiResponse[TaskResponse])
async def get_task(task_id: UUID, current_user: StaffDep, service: TaskServiceDep):
    task = await service.get_task(task_id, viewer=current_user.user)
    return ApiResponse(message="Task retrieved successfully", data=TaskResponse.model_validate(task))


@router.patch("/{task_id}", response_model=ApiResponse[TaskResponse])
async def update_task(
    task_id: UUID,
    data: TaskUpdate,
    current_user: StaffDep,
    service: TaskServiceDep,
    gateway: GatewayDep,
):
    task = await service.update_task(task_id, data, current_user.user)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(message="Task updated successfully", data=TaskResponse.model_validate(task))


@router.delete("/{task_id}", response_model=ApiResponse[dict])
async def delete_task(task_id: UUID, current_user: StaffDep, service: TaskServiceDep):
    await service.delete_task(task_id, current_user.user)
    return ApiResponse(message="Task deleted successfully", data={"id": str(task_id)})
