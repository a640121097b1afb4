"""
Deal Close Request Service: the close / reject / lost workflow.

Lead states move ``open -> closing_requested -> closed``, back from
``closing_requested`` to ``open`` on rejection, and to ``lost`` from either
open state. Approve and reject claim the request with a conditional
``UPDATE ... WHERE status = 'pending'`` so only one admin decision wins.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from ..models import (
    CloseRequestStatus,
    DealCloseRequest,
    DealStatus,
    Lead,
    LeadHistoryAction,
    User,
    UserRole,
    as_utc,
    utcnow,
)
from ..realtime import EventOutbox
from .lead_records import add_converted_lead, record_history, remove_converted_lead
from .leads import can_access_lead
from .notification_helpers import (
    notify_close_approved,
    notify_close_rejected,
    notify_close_requested,
)
from .notifications import NotificationService
from .stages import StageService

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Close request rejected by admin"
LOST_REJECTION_REASON = "Deal marked as lost"

SORTABLE_FIELDS = {
    "requestedAt": DealCloseRequest.requested_at,
    "approvedAt": DealCloseRequest.approved_at,
    "rejectedAt": DealCloseRequest.rejected_at,
    "createdAt": DealCloseRequest.created_at,
}


def grace_period_label(minutes: int) -> str:
    """Human form of the grace period: ``60`` -> ``"1 hour"``."""
    if minutes and minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


class DealCloseRequestService:
    """Service for the deal-close-request workflow."""

    def __init__(self, session: AsyncSession, outbox: EventOutbox | None = None):
        self.session = session
        self.outbox = outbox if outbox is not None else EventOutbox()
        self.settings = get_settings()
        self.stages = StageService(session, self.outbox)
        self.notifications = NotificationService(session, self.outbox)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_request(self, request_id: UUID) -> DealCloseRequest:
        result = await self.session.execute(
            select(DealCloseRequest)
            .where(DealCloseRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("Close request not found")
        return request

    async def list_requests(
        self,
        status: CloseRequestStatus | None = None,
        representative_id: UUID | None = None,
        lead_id: UUID | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "requestedAt",
        sort_order: str = "desc",
    ) -> tuple[list[DealCloseRequest], int]:
        """Admin listing, newest request first by default."""
        stmt = select(DealCloseRequest)
        if status is not None:
            stmt = stmt.where(DealCloseRequest.status == status)
        if representative_id is not None:
            stmt = stmt.where(DealCloseRequest.representative_id == representative_id)
        if lead_id is not None:
            stmt = stmt.where(DealCloseRequest.lead_id == lead_id)
        if search:
            stmt = stmt.join(Lead, DealCloseRequest.lead_id == Lead.id).where(
                Lead.title.ilike(f"%{search}%")
            )

        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))

        column = SORTABLE_FIELDS.get(sort_by, DealCloseRequest.requested_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        result = await self.session.execute(
            stmt.order_by(ordering, DealCloseRequest.id).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars()), total or 0

    async def list_approved_for_representative(self, representative_id: UUID) -> list[DealCloseRequest]:
        result = await self.session.execute(
            select(DealCloseRequest)
            .where(
                DealCloseRequest.representative_id == representative_id,
                DealCloseRequest.status == CloseRequestStatus.APPROVED,
            )
            .order_by(DealCloseRequest.approved_at.desc())
        )
        return list(result.scalars())

    # =========================================================================
    # REQUEST
    # =========================================================================

    async def request_close(
        self,
        lead_id: UUID,
        representative: User,
        notes: str | None = None,
    ) -> DealCloseRequest:
        """A representative asks an admin to close a deal assigned to them."""
        lead = await self._get_lead(lead_id)

        if lead.deal_status == DealStatus.CLOSED:
            raise BadRequestError("Deal is already closed")
        if lead.deal_status == DealStatus.CLOSING_REQUESTED:
            raise BadRequestError("Close request already submitted for this deal")
        if lead.deal_status == DealStatus.LOST:
            raise BadRequestError("Deal is marked as lost")
        if lead.assigned_to_id != representative.id:
            raise ForbiddenError("You are not assigned to this lead")

        now = utcnow()
        request = DealCloseRequest(
            lead_id=lead.id,
            representative_id=representative.id,
            requested_at=now,
            status=CloseRequestStatus.PENDING,
            incentive_currency=self.settings.incentive_currency,
            notes=notes,
            previous_stage_id=lead.stage_id,
        )
        # A concurrent request for the same lead loses on the pending-lead index
        try:
            async with self.session.begin_nested():
                self.session.add(request)
                await self.session.flush()
        except IntegrityError:
            logger.info(f"Concurrent close request for lead {lead.id} refused")
            raise BadRequestError("Close request already submitted for this deal") from None

        lead.deal_status = DealStatus.CLOSING_REQUESTED
        lead.closing_requested_at = now
        lead.deal_rejection_reason = None
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.DEAL_CLOSE_REQUESTED,
            representative.id,
            description="Representative requested to close this deal",
        )
        await self.session.flush()

        await notify_close_requested(self.notifications, lead, request, representative)

        logger.info(f"Close request {request.id} submitted for lead {lead.id} by {representative.id}")
        return await self.get_request(request.id)

    # =========================================================================
    # DECISIONS
    # =========================================================================

    async def approve(
        self,
        request_id: UUID,
        admin: User,
        incentive_amount: Decimal | None,
    ) -> DealCloseRequest:
        """Close the deal, credit the representative and move the lead to the won stage."""
        if incentive_amount is None or incentive_amount <= 0:
            raise BadRequestError("Valid incentive amount is required")

        now = utcnow()
        await self._claim(
            request_id,
            status=CloseRequestStatus.APPROVED,
            approved_by_id=admin.id,
            approved_at=now,
            incentive_amount=incentive_amount,
            incentive_currency=self.settings.incentive_currency,
        )
        request = await self.get_request(request_id)
        lead = await self._get_lead(request.lead_id)

        lead.deal_status = DealStatus.CLOSED
        lead.closed_at = now
        lead.closed_by_id = admin.id

        won_stage = await self.stages.get_won_stage()
        if won_stage is not None:
            lead.stage_id = won_stage.id
        else:
            logger.warning(f"No won stage configured; lead {lead.id} keeps its stage")

        incentive_label = (
            f"{self.settings.incentive_currency_symbol}{incentive_amount:.2f} "
            f"{self.settings.incentive_currency}"
        )
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.DEAL_CLOSED,
            admin.id,
            description=f"Deal closed by admin. Incentive: {incentive_label}",
        )
        await add_converted_lead(self.session, request.representative_id, lead.id)
        await self.session.flush()

        await notify_close_approved(self.notifications, lead, request, admin.id, incentive_label)
        self.outbox.to_user(
            request.representative_id,
            "lead:deal_approved",
            {
                "message": f'Your close request for "{lead.title}" was approved',
                "data": {
                    "requestId": str(request.id),
                    "leadId": str(lead.id),
                    "leadTitle": lead.title,
                    "incentiveAmount": float(incentive_amount),
                    "incentiveCurrency": self.settings.incentive_currency,
                },
            },
        )

        logger.info(f"Close request {request.id} approved by {admin.id} with incentive {incentive_label}")
        return await self.get_request(request.id)

    async def reject(
        self,
        request_id: UUID,
        admin: User,
        rejection_reason: str | None = None,
    ) -> DealCloseRequest:
        """Return the lead to ``open`` in its previous stage and withdraw conversion credit."""
        reason = (rejection_reason or "").strip() or DEFAULT_REJECTION_REASON

        await self._claim(
            request_id,
            status=CloseRequestStatus.REJECTED,
            rejected_by_id=admin.id,
            rejected_at=utcnow(),
            rejection_reason=reason,
        )
        request = await self.get_request(request_id)
        lead = await self._get_lead(request.lead_id)

        lead.deal_status = DealStatus.OPEN
        lead.closing_requested_at = None
        lead.deal_rejection_reason = reason
        if request.previous_stage_id is not None:
            lead.stage_id = request.previous_stage_id
        else:
            logger.warning(f"Close request {request.id} has no previous stage; lead {lead.id} keeps its stage")

        await remove_converted_lead(self.session, lead.id)
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.DEAL_CLOSE_REJECTED,
            admin.id,
            description=f"Close request rejected. Reason: {reason}",
        )
        await self.session.flush()

        await notify_close_rejected(self.notifications, lead, request, admin.id, reason)
        self.outbox.to_user(
            request.representative_id,
            "lead:deal_rejected",
            {
                "message": f'Your close request for "{lead.title}" was rejected',
                "data": {
                    "requestId": str(request.id),
                    "leadId": str(lead.id),
                    "leadTitle": lead.title,
                    "rejectionReason": reason,
                },
            },
        )

        logger.info(f"Close request {request.id} rejected by {admin.id}")
        return await self.get_request(request.id)

    async def mark_lost(self, lead_id: UUID, lost_reason: str | None, user: User) -> Lead:
        """Mark a deal lost, auto-rejecting any pending close request."""
        reason = (lost_reason or "").strip()
        if not reason:
            raise BadRequestError("Lost reason is required")

        lead = await self._get_lead(lead_id)
        if not can_access_lead(lead, user):
            raise ForbiddenError("You do not have access to this lead")
        if lead.deal_status == DealStatus.CLOSED:
            raise BadRequestError("Deal is already closed")
        if lead.deal_status == DealStatus.LOST:
            raise BadRequestError("Deal is already marked as lost")

        if lead.deal_status == DealStatus.CLOSING_REQUESTED:
            result = await self.session.execute(
                update(DealCloseRequest)
                .where(
                    DealCloseRequest.lead_id == lead.id,
                    DealCloseRequest.status == CloseRequestStatus.PENDING,
                )
                .values(
                    status=CloseRequestStatus.REJECTED,
                    rejected_by_id=user.id,
                    rejected_at=utcnow(),
                    rejection_reason=LOST_REJECTION_REASON,
                )
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount:
                logger.info(f"Pending close request for lead {lead.id} rejected as lost")

        lead.deal_status = DealStatus.LOST
        lead.lost_reason = reason
        lead.closing_requested_at = None
        if lead.owner_id is not None:
            await remove_converted_lead(self.session, lead.id, user_id=lead.owner_id)
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.DEAL_LOST,
            user.id,
            description=f"Deal marked as lost. Reason: {reason}",
        )
        await self.session.flush()

        logger.info(f"Lead {lead.id} marked as lost by {user.id}")
        return await self._get_lead(lead.id)

    async def delete_request(self, lead_id: UUID, user: User) -> None:
        """Withdraw a pending close request within the grace period."""
        lead = await self._get_lead(lead_id)

        result = await self.session.execute(
            select(DealCloseRequest).where(
                DealCloseRequest.lead_id == lead.id,
                DealCloseRequest.status == CloseRequestStatus.PENDING,
            )
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("No pending close request found for this lead")

        if user.role == UserRole.REPRESENTATIVE and request.representative_id != user.id:
            raise ForbiddenError("You can only delete your own close requests")

        grace_minutes = self.settings.close_request_grace_period_minutes
        if utcnow() - as_utc(request.requested_at) > timedelta(minutes=grace_minutes):
            raise ForbiddenError(
                f"Cannot delete close request after {grace_period_label(grace_minutes)} "
                "grace period has expired"
            )

        await remove_converted_lead(self.session, lead.id)
        await self.session.delete(request)

        lead.deal_status = DealStatus.OPEN
        lead.closing_requested_at = None
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.DEAL_CLOSE_REQUEST_DELETED,
            user.id,
            description="Close request deleted within grace period",
        )
        await self.session.flush()
        logger.info(f"Close request {request.id} for lead {lead.id} deleted by {user.id}")

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _claim(self, request_id: UUID, **values) -> None:
        """Move a pending request to its decided state, or fail if already decided."""
        request = await self.get_request(request_id)
        if request.status != CloseRequestStatus.PENDING:
            raise BadRequestError("Close request is already processed")

        result = await self.session.execute(
            update(DealCloseRequest)
            .where(
                DealCloseRequest.id == request_id,
                DealCloseRequest.status == CloseRequestStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Decided by a concurrent request between the read and the update
            raise BadRequestError("Close request is already processed")

    async def _get_lead(self, lead_id: UUID) -> Lead:
        result = await self.session.execute(
            select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True)
        )
        lead = result.scalar_one_or_none()
        if lead is None:
            raise NotFoundError("Lead not found")
        return lead
