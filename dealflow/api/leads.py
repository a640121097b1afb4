"""API routes for leads, their notes and activities."""

from decimal import Decimal
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import SessionDep, StaffDep
from ..models import DealStatus
from ..realtime import GatewayDep, OutboxDep, commit_and_publish
from ..schemas import (
    ActivityComplete,
    ActivityCreate,
    ApiResponse,
    LeadCreate,
    LeadDetailResponse,
    LeadNoteCreate,
    LeadResponse,
    LeadUpdate,
    PageMeta,
)
from ..services import LeadService

router = APIRouter(prefix="/leads", tags=["leads"])


def get_lead_service(session: SessionDep, outbox: OutboxDep) -> LeadService:
    return LeadService(session, outbox)


LeadServiceDep = Annotated[LeadService, Depends(get_lead_service)]


# =============================================================================
# LEAD CRUD
# =============================================================================


@router.post("", response_model=ApiResponse[LeadDetailResponse], status_code=status.HTTP_201_CREATED)
async def create_lead(
    data: LeadCreate,
    current_user: StaffDep,
    service: LeadServiceDep,
    gateway: GatewayDep,
):
    lead = await service.create_lead(data, current_user.user)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(message="Lead created successfully", data=LeadDetailResponse.model_validate(lead))


@router.get("", response_model=ApiResponse[list[LeadResponse]])
async def list_leads(
    current_user: StaffDep,
    service: LeadServiceDep,
    search: str | None = Query(None, alias="searchTerm"),
    stage_id: UUID | None = Query(None, alias="stage"),
    assigned_to_id: UUID | None = Query(None, alias="assignedTo"),
    deal_status: DealStatus | None = Query(None, alias="dealStatus"),
    min_budget: Decimal | None = Query(None, alias="minBudget", ge=0),
    max_budget: Decimal | None = Query(None, alias="maxBudget", ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
):
    """List leads visible to the caller."""
    leads, total = await service.list_leads(
        viewer=current_user.user,
        search=search,
        stage_id=stage_id,
        assigned_to_id=assigned_to_id,
        deal_status=deal_status,
        min_budget=min_budget,
        max_budget=max_budget,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ApiResponse(
        message="Leads retrieved successfully",
        meta=PageMeta.create(total=total, page=page, limit=limit),
        data=[LeadResponse.model_validate(lead) for lead in leads],
    )


@router.get("/{lead_id}", response_model=ApiResponse[LeadDetailResponse])
async def get_lead(lead_id: UUID, current_user: StaffDep, service: LeadServiceDep):
    lead = await service.get_lead(lead_id, viewer=current_user.user, detail=True)
    return ApiResponse(message="Lead retrieved successfully", data=LeadDetailResponse.model_validate(lead))


@router.patch("/{lead_id}", response_model=ApiResponse[LeadDetailResponse])
async def update_lead(
    lead_id: UUID,
    data: LeadUpdate,
    current_user: StaffDep,
    service: LeadServiceDep,
    gateway: GatewayDep,
):
    lead = await service.update_lead(lead_id, data, current_user.user)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(message="Lead updated successfully", data=LeadDetailResponse.model_validate(lead))


@router.delete("/{lead_id}", response_model=ApiResponse[dict])
async def delete_lead(lead_id: UUID, current_user: StaffDep, service: LeadServiceDep):
    await service.delete_lead(lead_id, current_user.user)
    return ApiResponse(message="Lead deleted successfully", data={"id": str(lead_id)})


# =============================================================================
# NOTES & ACTIVITIES
# =============================================================================


@router.post("/{lead_id}/notes", response_model=ApiResponse[LeadDetailResponse])
async def add_note(
    lead_id: UUID,
    data: LeadNoteCreate,
    current_user: StaffDep,
    service: LeadServiceDep,
):
    lead = await service.add_note(lead_id, data.text, current_user.user)
    return ApiResponse(message="Note added successfully", data=LeadDetailResponse.model_validate(lead))


@router.post("/{lead_id}/activities", response_model=ApiResponse[LeadDetailResponse])
async def add_activity(
    lead_id: UUID,
    data: ActivityCreate,
    current_user: StaffDep,
    service: LeadServiceDep,
):
    lead = await service.add_activity(lead_id, data, current_user.user)
    return ApiResponse(message="Activity added successfully", data=LeadDetailResponse.model_validate(lead))


@router.patch(
    "/{lead_id}/activities/{activity_id}/complete",
    response_model=ApiResponse[LeadDetailResponse],
)
async def complete_activity(
    lead_id: UUID,
    activity_id: UUID,
    current_user: StaffDep,
    service: LeadServiceDep,
    data: ActivityComplete | None = None,
):
    lead = await service.complete_activity(
        lead_id,
        activity_id,
        data.feedback if data else None,
        current_user.user,
    )
    return ApiResponse(
        message="Activity marked as completed",
        data=LeadDetailResponse.model_validate(lead),
    )
