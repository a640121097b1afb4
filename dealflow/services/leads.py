"""Lead service: lead CRUD, notes, activities and conversion tracking."""

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from ..models import (
    DealStatus,
    Lead,
    LeadActivity,
    LeadHistoryAction,
    User,
    UserRole,
    utcnow,
)
from ..realtime import EventOutbox
from ..schemas import ActivityCreate, LeadCreate, LeadUpdate
from .lead_records import add_converted_lead, purge_leads, record_history, remove_converted_lead
from .notification_helpers import notify_lead_assigned, notify_lead_created
from .notifications import NotificationService
from .stages import StageService

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "createdAt": Lead.created_at,
    "updatedAt": Lead.updated_at,
    "title": Lead.title,
    "name": Lead.name,
    "budget": Lead.budget,
    "followUpDate": Lead.follow_up_date,
}


def can_access_lead(lead: Lead, user: User) -> bool:
    """Representatives only see leads they created or are assigned to."""
    if user.role != UserRole.REPRESENTATIVE:
        return True
    return user.id in (lead.created_by_id, lead.assigned_to_id)


class LeadService:
    """Service for managing leads."""

    def __init__(self, session: AsyncSession, outbox: EventOutbox | None = None):
        self.session = session
        self.outbox = outbox if outbox is not None else EventOutbox()
        self.stages = StageService(session, self.outbox)
        self.notifications = NotificationService(session, self.outbox)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_lead(
        self,
        lead_id: UUID,
        viewer: User | None = None,
        detail: bool = False,
    ) -> Lead:
        """Fetch a lead, optionally with history and activities loaded."""
        stmt = select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True)
        if detail:
            stmt = stmt.options(selectinload(Lead.history), selectinload(Lead.activities))

        lead = (await self.session.execute(stmt)).scalar_one_or_none()
        if lead is None:
            raise NotFoundError("Lead not found")
        if viewer is not None and not can_access_lead(lead, viewer):
            raise ForbiddenError("You do not have access to this lead")
        return lead

    async def list_leads(
        self,
        viewer: User,
        search: str | None = None,
        stage_id: UUID | None = None,
        assigned_to_id: UUID | None = None,
        deal_status: DealStatus | None = None,
        min_budget: Decimal | None = None,
        max_budget: Decimal | None = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> tuple[list[Lead], int]:
        stmt = select(Lead)
        if viewer.role == UserRole.REPRESENTATIVE:
            stmt = stmt.where(or_(Lead.created_by_id == viewer.id, Lead.assigned_to_id == viewer.id))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    Lead.title.ilike(pattern),
                    Lead.name.ilike(pattern),
                    Lead.email.ilike(pattern),
                    Lead.phone.ilike(pattern),
                )
            )
        if stage_id is not None:
            stmt = stmt.where(Lead.stage_id == stage_id)
        if assigned_to_id is not None:
            stmt = stmt.where(Lead.assigned_to_id == assigned_to_id)
        if deal_status is not None:
            stmt = stmt.where(Lead.deal_status == deal_status)
        if min_budget is not None:
            stmt = stmt.where(Lead.budget >= min_budget)
        if max_budget is not None:
            stmt = stmt.where(Lead.budget <= max_budget)

        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))

        column = SORTABLE_FIELDS.get(sort_by, Lead.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        result = await self.session.execute(
            stmt.order_by(ordering, Lead.id).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars()), total or 0

    # =========================================================================
    # CREATE / UPDATE / DELETE
    # =========================================================================

    async def create_lead(self, data: LeadCreate, actor: User) -> Lead:
        """Create a lead in the requested stage, or the first stage."""
        if data.stage_id is not None:
            stage = await self.stages.get_stage(data.stage_id)
        else:
            stage = await self.stages.get_first_stage()
            if stage is None:
                raise BadRequestError("Create a pipeline stage before adding leads")

        if data.assigned_to_id is not None:
            await self._get_user(data.assigned_to_id)

        lead = Lead(
            title=data.title,
            name=data.name,
            email=data.email,
            phone=data.phone,
            source=data.source,
            stage_id=stage.id,
            assigned_to_id=data.assigned_to_id,
            created_by_id=actor.id,
            budget=data.budget,
            currency=data.currency,
            attachments=list(data.attachments),
            notes=[],
            quick_note=data.quick_note,
            follow_up_date=data.follow_up_date,
            deal_status=DealStatus.OPEN,
        )
        self.session.add(lead)
        await self.session.flush()

        await self.session.execute(
            update(User)
            .where(User.id == actor.id)
            .values(total_leads=User.total_leads + 1)
            .execution_options(synchronize_session="fetch")
        )
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.CREATED,
            actor.id,
            description=f"Lead created by {actor.name}",
        )
        await self.session.flush()

        await notify_lead_created(self.notifications, lead, actor.id)

        logger.info(f"Lead {lead.id} created by {actor.id} in stage {stage.id}")
        return await self.get_lead(lead.id, detail=True)

    async def update_lead(self, lead_id: UUID, data: LeadUpdate, actor: User) -> Lead:
        """Apply a partial update and record a history entry per change.

        Moving a lead into the won stage credits the owner's converted
        leads; moving it out withdraws the credit.
        """
        lead = await self.get_lead(lead_id, viewer=actor)
        changes = data.model_dump(exclude_unset=True)

        if "assigned_to_id" in changes:
            await self._reassign(lead, changes.pop("assigned_to_id"), actor)
        if "stage_id" in changes:
            stage_id = changes.pop("stage_id")
            if stage_id is not None:
                await self._move_to_stage(lead, stage_id, actor)

        for field, value in changes.items():
            if field in ("title", "name", "currency", "attachments") and value is None:
                continue
            old_value = getattr(lead, field)
            if old_value == value:
                continue
            setattr(lead, field, value)
            record_history(
                self.session,
                lead.id,
                LeadHistoryAction.UPDATED,
                actor.id,
                description=f"{field} updated",
                field=field,
                old_value=old_value,
                new_value=value,
            )

        await self.session.flush()
        return await self.get_lead(lead.id, detail=True)

    async def _reassign(self, lead: Lead, assignee_id: UUID | None, actor: User) -> None:
        if assignee_id == lead.assigned_to_id:
            return
        if assignee_id is not None:
            await self._get_user(assignee_id)

        old_assignee = lead.assigned_to_id
        lead.assigned_to_id = assignee_id
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.ASSIGNED,
            actor.id,
            description="Lead reassigned" if assignee_id else "Lead unassigned",
            field="assignedTo",
            old_value=old_assignee,
            new_value=assignee_id,
        )
        await self.session.flush()

        if assignee_id is not None:
            await notify_lead_assigned(self.notifications, lead, assignee_id, actor.id)

    async def _move_to_stage(self, lead: Lead, stage_id: UUID, actor: User) -> None:
        if stage_id == lead.stage_id:
            return
        new_stage = await self.stages.get_stage(stage_id)
        won_stage = await self.stages.get_won_stage()
        old_stage = lead.stage

        lead.stage_id = new_stage.id
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.STAGE_CHANGED,
            actor.id,
            description=f"Stage changed from {old_stage.title} to {new_stage.title}",
            field="stage",
            old_value=old_stage.title,
            new_value=new_stage.title,
        )

        if won_stage is not None and new_stage.id == won_stage.id:
            if lead.owner_id is not None:
                await add_converted_lead(self.session, lead.owner_id, lead.id)
        elif won_stage is not None and old_stage.id == won_stage.id:
            await remove_converted_lead(self.session, lead.id)

    async def delete_lead(self, lead_id: UUID, actor: User) -> None:
        """Delete a lead with its tasks, requests, history and activities."""
        lead = await self.get_lead(lead_id)
        if actor.role == UserRole.REPRESENTATIVE and lead.created_by_id != actor.id:
            raise ForbiddenError("You can only delete leads you created")

        await purge_leads(self.session, [lead.id])
        await self.session.flush()
        logger.info(f"Lead {lead_id} deleted by {actor.id}")

    # =========================================================================
    # NOTES & ACTIVITIES
    # =========================================================================

    async def add_note(self, lead_id: UUID, text: str, actor: User) -> Lead:
        lead = await self.get_lead(lead_id, viewer=actor)
        note: dict[str, Any] = {
            "text": text,
            "addedBy": str(actor.id),
            "addedByName": actor.name,
            "date": utcnow().isoformat(),
        }
        # Reassign so the JSON column is marked dirty
        lead.notes = [*(lead.notes or []), note]
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.NOTE_ADDED,
            actor.id,
            description=f"Note added by {actor.name}",
        )
        await self.session.flush()
        return await self.get_lead(lead.id, detail=True)

    async def add_activity(self, lead_id: UUID, data: ActivityCreate, actor: User) -> Lead:
        lead = await self.get_lead(lead_id, viewer=actor)
        activity = LeadActivity(
            lead_id=lead.id,
            type=data.type,
            date=data.date,
            added_by_id=actor.id,
            note=data.note,
            meeting_type=data.meeting_type,
            meeting_link=data.meeting_link,
            meeting_location=data.meeting_location,
        )
        self.session.add(activity)
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.ACTIVITY_ADDED,
            actor.id,
            description=f"{data.type.value.capitalize()} scheduled for {data.date:%Y-%m-%d %H:%M}",
        )
        await self.session.flush()
        return await self.get_lead(lead.id, detail=True)

    async def complete_activity(
        self,
        lead_id: UUID,
        activity_id: UUID,
        feedback: str | None,
        actor: User,
    ) -> Lead:
        lead = await self.get_lead(lead_id, viewer=actor)
        activity = (
            await self.session.execute(
                select(LeadActivity).where(LeadActivity.id == activity_id, LeadActivity.lead_id == lead.id)
            )
        ).scalar_one_or_none()
        if activity is None:
            raise NotFoundError("Activity not found")
        if activity.completed:
            raise BadRequestError("Activity is already completed")

        activity.completed = True
        activity.completed_at = utcnow()
        activity.completed_by_id = actor.id
        activity.feedback = feedback
        record_history(
            self.session,
            lead.id,
            LeadHistoryAction.ACTIVITY_COMPLETED,
            actor.id,
            description=f"{activity.type.value.capitalize()} completed by {actor.name}",
        )
        await self.session.flush()
        return await self.get_lead(lead.id, detail=True)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_user(self, user_id: UUID) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user
