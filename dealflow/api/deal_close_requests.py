"""API routes for the deal-close-request workflow."""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import AdminDep, CurrentUser, RepresentativeDep, SessionDep, require_roles
from ..models import CloseRequestStatus, UserRole
from ..realtime import GatewayDep, OutboxDep, commit_and_publish
from ..schemas import (
    ApiResponse,
    ApproveCloseRequest,
    CloseRequestCreate,
    DealCloseRequestResponse,
    LeadResponse,
    MarkLostRequest,
    PageMeta,
    RejectCloseRequest,
)
from ..services import DealCloseRequestService

router = APIRouter(prefix="/deal-close-requests", tags=["deal-close-requests"])


def get_close_request_service(session: SessionDep, outbox: OutboxDep) -> DealCloseRequestService:
    return DealCloseRequestService(session, outbox)


CloseRequestServiceDep = Annotated[DealCloseRequestService, Depends(get_close_request_service)]
RepresentativeOrAdminDep = Annotated[
    CurrentUser,
    Depends(require_roles(UserRole.REPRESENTATIVE, UserRole.ADMIN, UserRole.SUPER_ADMIN)),
]


@router.post(
    "/create",
    response_model=ApiResponse[DealCloseRequestResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_close_request(
    data: CloseRequestCreate,
    current_user: RepresentativeDep,
    service: CloseRequestServiceDep,
    gateway: GatewayDep,
):
    """A representative asks to close a deal assigned to them."""
    request = await service.request_close(data.lead_id, current_user.user, notes=data.notes)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(
        message="Close request submitted successfully",
        data=DealCloseRequestResponse.model_validate(request),
    )


@router.post("/mark-lost", response_model=ApiResponse[LeadResponse])
async def mark_lost(
    data: MarkLostRequest,
    current_user: RepresentativeOrAdminDep,
    service: CloseRequestServiceDep,
):
    lead = await service.mark_lost(data.lead_id, data.lost_reason, current_user.user)
    return ApiResponse(message="Deal marked as lost", data=LeadResponse.model_validate(lead))


@router.get("", response_model=ApiResponse[list[DealCloseRequestResponse]])
async def list_close_requests(
    current_user: AdminDep,
    service: CloseRequestServiceDep,
    request_status: CloseRequestStatus | None = Query(None, alias="status"),
    representative_id: UUID | None = Query(None, alias="representative"),
    lead_id: UUID | None = Query(None, alias="lead"),
    search: str | None = Query(None, alias="searchTerm"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("requestedAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
):
    requests, total = await service.list_requests(
        status=request_status,
        representative_id=representative_id,
        lead_id=lead_id,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ApiResponse(
        message="Close requests retrieved successfully",
        meta=PageMeta.create(total=total, page=page, limit=limit),
        data=[DealCloseRequestResponse.model_validate(r) for r in requests],
    )


@router.get("/my-approved", response_model=ApiResponse[list[DealCloseRequestResponse]])
async def my_approved_requests(current_user: RepresentativeDep, service: CloseRequestServiceDep):
    requests = await service.list_approved_for_representative(current_user.id)
    return ApiResponse(
        message="Approved close requests retrieved successfully",
        data=[DealCloseRequestResponse.model_validate(r) for r in requests],
    )


@router.patch("/approve/{request_id}", response_model=ApiResponse[DealCloseRequestResponse])
async def approve_close_request(
    request_id: UUID,
    data: ApproveCloseRequest,
    current_user: AdminDep,
    service: CloseRequestServiceDep,
    gateway: GatewayDep,
):
    request = await service.approve(request_id, current_user.user, data.incentive_amount)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(
        message="Close request approved successfully",
        data=DealCloseRequestResponse.model_validate(request),
    )


@router.patch("/reject/{request_id}", response_model=ApiResponse[DealCloseRequestResponse])
async def reject_close_request(
    request_id: UUID,
    current_user: AdminDep,
    service: CloseRequestServiceDep,
    gateway: GatewayDep,
    data: RejectCloseRequest | None = None,
):
    request = await service.reject(
        request_id,
        current_user.user,
        data.rejection_reason if data else None,
    )
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(
        message="Close request rejected successfully",
        data=DealCloseRequestResponse.model_validate(request),
    )


@router.delete("/delete/{lead_id}", response_model=ApiResponse[dict])
async def delete_close_request(
    lead_id: UUID,
    current_user: RepresentativeOrAdminDep,
    service: CloseRequestServiceDep,
):
    """Withdraw a pending request within the grace period."""
    await service.delete_request(lead_id, current_user.user)
    return ApiResponse(message="Close request deleted successfully", data={"leadId": str(lead_id)})
