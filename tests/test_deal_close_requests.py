"""
Tests for the Deal Close Request workflow.

These tests verify:
1. REQUEST: state guards and the stage snapshot
2. APPROVE: won stage, conversion credit, single decision per request
3. REJECT: previous stage restored, credit withdrawn
4. LOST: pending requests auto-rejected
5. DELETE: grace period and ownership
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from dealflow.core import BadRequestError, ForbiddenError, NotFoundError
from dealflow.models import (
    CloseRequestStatus,
    DealCloseRequest,
    DealStatus,
    Lead,
    LeadHistoryAction,
    Notification,
    utcnow,
)
from dealflow.realtime import user_room
from dealflow.schemas import LeadCreate, LeadUpdate
from dealflow.services import DealCloseRequestService, LeadService, add_converted_lead, converted_lead_ids
from dealflow.services.deal_close_requests import (
    DEFAULT_REJECTION_REASON,
    LOST_REJECTION_REASON,
    grace_period_label,
)


@pytest.fixture
async def lead(session, admin, rep, stages) -> Lead:
    """An open lead in Contacted, assigned to Rina."""
    lead = await LeadService(session).create_lead(
        LeadCreate(
            title="Cloud migration",
            name="Jamuna Textiles",
            stage_id=stages["contacted"].id,
            assigned_to_id=rep.id,
        ),
        admin,
    )
    await session.commit()
    return lead


@pytest.fixture
async def pending(session, rep, lead) -> DealCloseRequest:
    request = await DealCloseRequestService(session).request_close(lead.id, rep, notes="Signed")
    await session.commit()
    return request


async def _reload_lead(session, lead_id) -> Lead:
    result = await session.execute(
        select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _history_actions(session, lead_id) -> list[str]:
    lead = await LeadService(session).get_lead(lead_id, detail=True)
    return [entry.action for entry in lead.history]


# =============================================================================
# TEST: REQUEST
# =============================================================================


class TestRequestClose:
    """Tests for POST /deal-close-requests/create."""

    async def test_request_moves_lead_to_closing_requested(self, session, rep, stages, lead):
        request = await DealCloseRequestService(session).request_close(lead.id, rep, notes="Signed")

        assert request.status == CloseRequestStatus.PENDING
        assert request.previous_stage_id == stages["contacted"].id
        assert request.incentive_currency == "BDT"
        assert request.notes == "Signed"

        lead = await _reload_lead(session, lead.id)
        assert lead.deal_status == DealStatus.CLOSING_REQUESTED
        assert lead.closing_requested_at is not None
        assert LeadHistoryAction.DEAL_CLOSE_REQUESTED.value in await _history_actions(session, lead.id)

    async def test_request_notifies_admins(self, session, super_admin, admin, rep, lead):
        await DealCloseRequestService(session).request_close(lead.id, rep)

        notification = (
            await session.execute(select(Notification).where(Notification.title == "Deal Close Requested"))
        ).scalar_one()
        assert set(notification.recipient_ids) == {admin.id, super_admin.id}
        assert notification.message == 'Rina Rep requested to close the deal "Cloud migration"'

    async def test_second_request_is_rejected(self, session, rep, lead, pending):
        with pytest.raises(BadRequestError, match="Close request already submitted for this deal"):
            await DealCloseRequestService(session).request_close(lead.id, rep)

    async def test_concurrent_request_is_refused_by_pending_index(self, session, rep, lead, pending):
        # Another request slipped in after this caller read the lead as open
        await session.execute(update(Lead).where(Lead.id == lead.id).values(deal_status=DealStatus.OPEN))

        with pytest.raises(BadRequestError, match="Close request already submitted for this deal"):
            await DealCloseRequestService(session).request_close(lead.id, rep)

        pending_count = await session.scalar(
            select(func.count())
            .select_from(DealCloseRequest)
            .where(DealCloseRequest.lead_id == lead.id, DealCloseRequest.status == CloseRequestStatus.PENDING)
        )
        assert pending_count == 1

    async def test_unassigned_representative_is_forbidden(self, session, other_rep, lead):
        with pytest.raises(ForbiddenError, match="You are not assigned to this lead"):
            await DealCloseRequestService(session).request_close(lead.id, other_rep)

    async def test_unknown_lead(self, session, rep):
        with pytest.raises(NotFoundError, match="Lead not found"):
            await DealCloseRequestService(session).request_close(uuid4(), rep)

    async def test_lost_lead_cannot_be_requested(self, session, rep, lead):
        service = DealCloseRequestService(session)
        await service.mark_lost(lead.id, "Budget cut", rep)

        with pytest.raises(BadRequestError, match="Deal is marked as lost"):
            await service.request_close(lead.id, rep)


# =============================================================================
# TEST: APPROVE
# =============================================================================


class TestApprove:
    """Tests for PATCH /deal-close-requests/approve/{id}."""

    async def test_approve_closes_deal(self, session, outbox, admin, rep, stages, lead, pending):
        service = DealCloseRequestService(session, outbox)

        request = await service.approve(pending.id, admin, Decimal("5000"))

        assert request.status == CloseRequestStatus.APPROVED
        assert request.approved_by_id == admin.id
        assert request.incentive_amount == Decimal("5000")

        lead = await _reload_lead(session, lead.id)
        assert lead.deal_status == DealStatus.CLOSED
        assert lead.closed_by_id == admin.id
        assert lead.stage_id == stages["won"].id
        assert await converted_lead_ids(session, rep.id) == [lead.id]

        detail = await LeadService(session).get_lead(lead.id, detail=True)
        assert detail.history[-1].description == "Deal closed by admin. Incentive: ৳5000.00 BDT"

    async def test_approve_pushes_event_to_representative(self, session, outbox, admin, rep, lead, pending):
        await DealCloseRequestService(session, outbox).approve(pending.id, admin, Decimal("1250.5"))

        [event] = [e for e in outbox.events if e.event == "lead:deal_approved"]
        assert event.rooms == [user_room(rep.id)]
        assert event.payload["data"] == {
            "requestId": str(pending.id),
            "leadId": str(lead.id),
            "leadTitle": "Cloud migration",
            "incentiveAmount": 1250.5,
            "incentiveCurrency": "BDT",
        }

    @pytest.mark.parametrize("amount", [None, Decimal("0"), Decimal("-10")])
    async def test_incentive_is_required(self, session, admin, pending, amount):
        with pytest.raises(BadRequestError, match="Valid incentive amount is required"):
            await DealCloseRequestService(session).approve(pending.id, admin, amount)

    async def test_second_decision_is_refused(self, session, admin, super_admin, pending):
        service = DealCloseRequestService(session)
        await service.approve(pending.id, admin, Decimal("100"))

        with pytest.raises(BadRequestError, match="Close request is already processed"):
            await service.approve(pending.id, super_admin, Decimal("200"))
        with pytest.raises(BadRequestError, match="Close request is already processed"):
            await service.reject(pending.id, super_admin, "Too late")

        request = await service.get_request(pending.id)
        assert request.approved_by_id == admin.id
        assert request.incentive_amount == Decimal("100")

    async def test_unknown_request(self, session, admin):
        with pytest.raises(NotFoundError, match="Close request not found"):
            await DealCloseRequestService(session).approve(uuid4(), admin, Decimal("1"))

    async def test_my_approved_lists_only_approved(self, session, admin, rep, pending):
        service = DealCloseRequestService(session)
        assert await service.list_approved_for_representative(rep.id) == []

        await service.approve(pending.id, admin, Decimal("10"))

        [approved] = await service.list_approved_for_representative(rep.id)
        assert approved.id == pending.id


# =============================================================================
# TEST: REJECT
# =============================================================================


class TestReject:
    """Tests for PATCH /deal-close-requests/reject/{id}."""

    async def test_reject_restores_previous_stage(self, session, outbox, admin, rep, stages, lead, pending):
        # Lead was moved to Won while the request was pending
        await LeadService(session).update_lead(lead.id, LeadUpdate(stage_id=stages["won"].id), admin)
        await add_converted_lead(session, admin.id, lead.id)
        assert await converted_lead_ids(session, rep.id) == [lead.id]
        assert await converted_lead_ids(session, admin.id) == [lead.id]

        request = await DealCloseRequestService(session, outbox).reject(pending.id, admin, "Missing invoice")

        assert request.status == CloseRequestStatus.REJECTED
        assert request.rejection_reason == "Missing invoice"

        lead = await _reload_lead(session, lead.id)
        assert lead.deal_status == DealStatus.OPEN
        assert lead.stage_id == stages["contacted"].id
        assert lead.closing_requested_at is None
        assert lead.deal_rejection_reason == "Missing invoice"
        assert await converted_lead_ids(session, rep.id) == []
        assert await converted_lead_ids(session, admin.id) == []

        [event] = [e for e in outbox.events if e.event == "lead:deal_rejected"]
        assert event.rooms == [user_room(rep.id)]
        assert event.payload["data"]["rejectionReason"] == "Missing invoice"

    async def test_blank_reason_uses_default(self, session, admin, pending):
        request = await DealCloseRequestService(session).reject(pending.id, admin, "   ")

        assert request.rejection_reason == DEFAULT_REJECTION_REASON

    async def test_rejected_lead_can_be_requested_again(self, session, admin, rep, lead, pending):
        service = DealCloseRequestService(session)
        await service.reject(pending.id, admin)

        again = await service.request_close(lead.id, rep)

        assert again.status == CloseRequestStatus.PENDING
        assert (await _reload_lead(session, lead.id)).deal_rejection_reason is None


# =============================================================================
# TEST: MARK LOST
# =============================================================================


class TestMarkLost:
    """Tests for PATCH /deal-close-requests/mark-lost."""

    async def test_mark_open_lead_lost(self, session, rep, lead):
        lost = await DealCloseRequestService(session).mark_lost(lead.id, "  Budget cut ", rep)

        assert lost.deal_status == DealStatus.LOST
        assert lost.lost_reason == "Budget cut"
        assert LeadHistoryAction.DEAL_LOST.value in await _history_actions(session, lead.id)

    async def test_pending_request_is_auto_rejected(self, session, admin, lead, pending):
        await DealCloseRequestService(session).mark_lost(lead.id, "Went with a competitor", admin)

        request = await DealCloseRequestService(session).get_request(pending.id)
        assert request.status == CloseRequestStatus.REJECTED
        assert request.rejection_reason == LOST_REJECTION_REASON
        assert request.rejected_by_id == admin.id
        assert (await _reload_lead(session, lead.id)).closing_requested_at is None

    async def test_reason_is_required(self, session, rep, lead):
        with pytest.raises(BadRequestError, match="Lost reason is required"):
            await DealCloseRequestService(session).mark_lost(lead.id, " ", rep)

    async def test_closed_deal_cannot_be_lost(self, session, admin, rep, lead, pending):
        service = DealCloseRequestService(session)
        await service.approve(pending.id, admin, Decimal("100"))

        with pytest.raises(BadRequestError, match="Deal is already closed"):
            await service.mark_lost(lead.id, "Changed mind", admin)

    async def test_lost_twice(self, session, rep, lead):
        service = DealCloseRequestService(session)
        await service.mark_lost(lead.id, "Budget cut", rep)

        with pytest.raises(BadRequestError, match="Deal is already marked as lost"):
            await service.mark_lost(lead.id, "Again", rep)

    async def test_foreign_representative_is_forbidden(self, session, other_rep, lead):
        with pytest.raises(ForbiddenError):
            await DealCloseRequestService(session).mark_lost(lead.id, "Not mine", other_rep)


# =============================================================================
# TEST: DELETE
# =============================================================================


class TestDeleteRequest:
    """Tests for DELETE /deal-close-requests/delete/{leadId}."""

    async def test_delete_within_grace_period(self, session, rep, lead, pending):
        await DealCloseRequestService(session).delete_request(lead.id, rep)

        remaining = (await session.execute(select(DealCloseRequest))).scalars().all()
        assert remaining == []

        lead = await _reload_lead(session, lead.id)
        assert lead.deal_status == DealStatus.OPEN
        assert lead.closing_requested_at is None
        assert LeadHistoryAction.DEAL_CLOSE_REQUEST_DELETED.value in await _history_actions(session, lead.id)

    async def test_delete_after_grace_period(self, session, rep, lead, pending):
        pending.requested_at = utcnow() - timedelta(hours=2)
        await session.commit()

        with pytest.raises(
            ForbiddenError,
            match="Cannot delete close request after 1 hour grace period has expired",
        ):
            await DealCloseRequestService(session).delete_request(lead.id, rep)

    async def test_other_representative_cannot_delete(self, session, other_rep, lead, pending):
        with pytest.raises(ForbiddenError, match="You can only delete your own close requests"):
            await DealCloseRequestService(session).delete_request(lead.id, other_rep)

    async def test_admin_can_delete(self, session, admin, lead, pending):
        await DealCloseRequestService(session).delete_request(lead.id, admin)

        assert (await _reload_lead(session, lead.id)).deal_status == DealStatus.OPEN

    async def test_nothing_pending(self, session, rep, lead):
        with pytest.raises(NotFoundError, match="No pending close request found for this lead"):
            await DealCloseRequestService(session).delete_request(lead.id, rep)


class TestGracePeriodLabel:
    @pytest.mark.parametrize(
        "minutes,label",
        [(60, "1 hour"), (120, "2 hours"), (90, "90 minutes"), (1, "1 minute")],
    )
    def test_label(self, minutes, label):
        assert grace_period_label(minutes) == label
