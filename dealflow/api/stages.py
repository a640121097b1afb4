"""API routes for pipeline stages."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import SessionDep, StaffDep
from ..realtime import GatewayDep, OutboxDep, commit_and_publish
from ..schemas import (
    ApiResponse,
    PageMeta,
    StageCreate,
    StageReorderRequest,
    StageResponse,
    StageUpdate,
)
from ..services import StageService

router = APIRouter(prefix="/stages", tags=["stages"])


def get_stage_service(session: SessionDep, outbox: OutboxDep) -> StageService:
    return StageService(session, outbox)


StageServiceDep = Annotated[StageService, Depends(get_stage_service)]


@router.post("", response_model=ApiResponse[StageResponse], status_code=status.HTTP_201_CREATED)
async def create_stage(data: StageCreate, current_user: StaffDep, service: StageServiceDep):
    """Create a stage at the end of the pipeline."""
    stage = await service.create_stage(data, created_by=current_user.id)
    return ApiResponse(message="Stage created successfully", data=StageResponse.model_validate(stage))


@router.get("", response_model=ApiResponse[list[StageResponse]])
async def list_stages(
    current_user: StaffDep,
    service: StageServiceDep,
    search: str | None = Query(None, alias="searchTerm"),
    is_active: bool | None = Query(None, alias="isActive"),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=100),
):
    """List stages in pipeline order. Without ``limit`` every stage is returned."""
    stages, total = await service.list_stages(search=search, is_active=is_active, page=page, limit=limit)
    return ApiResponse(
        message="Stages retrieved successfully",
        meta=PageMeta.create(total=total, page=page, limit=limit or max(total, 1)),
        data=[StageResponse.model_validate(s) for s in stages],
    )


@router.patch("/reorder", response_model=ApiResponse[list[StageResponse]])
async def reorder_stages(
    data: StageReorderRequest,
    current_user: StaffDep,
    service: StageServiceDep,
    gateway: GatewayDep,
):
    """Move one stage and broadcast the new order."""
    stages = await service.reorder_stages(data.source_index, data.destination_index, current_user.role)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(
        message="Stages reordered successfully",
        data=[StageResponse.model_validate(s) for s in stages],
    )


@router.get("/{stage_id}", response_model=ApiResponse[StageResponse])
async def get_stage(stage_id: UUID, current_user: StaffDep, service: StageServiceDep):
    stage = await service.get_stage(stage_id)
    return ApiResponse(message="Stage retrieved successfully", data=StageResponse.model_validate(stage))


@router.patch("/{stage_id}", response_model=ApiResponse[StageResponse])
async def update_stage(
    stage_id: UUID,
    data: StageUpdate,
    current_user: StaffDep,
    service: StageServiceDep,
):
    stage = await service.update_stage(stage_id, data)
    return ApiResponse(message="Stage updated successfully", data=StageResponse.model_validate(stage))


@router.delete("/{stage_id}", response_model=ApiResponse[dict])
async def delete_stage(stage_id: UUID, current_user: StaffDep, service: StageServiceDep):
    """Delete a stage together with every lead in it."""
    deleted_leads = await service.delete_stage(stage_id)
    return ApiResponse(
        message="Stage deleted successfully",
        data={"id": str(stage_id), "deletedLeads": deleted_leads},
    )
