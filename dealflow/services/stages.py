"""
Stage Service: ordered pipeline columns.

Positions are assigned ``max + 1`` on create and rewritten to a dense
``0..n-1`` sequence on every reorder. Deleting a stage deletes the leads
in it and closes the gap it leaves behind.
"""

import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import BadRequestError, NotFoundError
from ..models import DealCloseRequest, Lead, Stage, StageOutcome, UserRole
from ..realtime import EventOutbox, role_room
from ..schemas import StageCreate, StageResponse, StageUpdate, dump_event
from .lead_records import purge_leads

logger = logging.getLogger(__name__)

# Rooms that hear about a reorder, keyed by the caller's role
STAGE_REORDER_ROOMS: dict[UserRole, list[str]] = {
    UserRole.REPRESENTATIVE: [role_room(UserRole.REPRESENTATIVE)],
}
DEFAULT_STAGE_REORDER_ROOMS = [
    role_room(UserRole.ADMIN),
    role_room(UserRole.SUPER_ADMIN),
    role_room(UserRole.REPRESENTATIVE),
]


def stage_reorder_rooms(role: UserRole) -> list[str]:
    return list(STAGE_REORDER_ROOMS.get(role, DEFAULT_STAGE_REORDER_ROOMS))


class StageService:
    """Service for managing pipeline stages."""

    def __init__(self, session: AsyncSession, outbox: EventOutbox | None = None):
        self.session = session
        self.outbox = outbox if outbox is not None else EventOutbox()

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_stage(self, data: StageCreate, created_by: UUID | None) -> Stage:
        """Create a stage at the end of the pipeline."""
        next_position = await self.session.scalar(
            select(func.coalesce(func.max(Stage.position), -1) + 1)
        )

        stage = Stage(
            title=data.title,
            position=next_position,
            is_active=data.is_active,
            is_terminal=data.is_terminal,
            created_by_id=created_by,
        )
        self.session.add(stage)
        await self.session.flush()

        logger.info(f"Stage {stage.id} '{stage.title}' created at position {stage.position}")
        return await self.get_stage(stage.id)

    async def get_stage(self, stage_id: UUID) -> Stage:
        result = await self.session.execute(
            select(Stage)
            .where(Stage.id == stage_id)
            .execution_options(populate_existing=True)
        )
        stage = result.scalar_one_or_none()
        if stage is None:
            raise NotFoundError("Stage not found")
        return stage

    async def list_stages(
        self,
        search: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> tuple[list[Stage], int]:
        """Stages ordered by position. ``limit=None`` returns all of them."""
        stmt = select(Stage)
        if search:
            stmt = stmt.where(Stage.title.ilike(f"%{search}%"))
        if is_active is not None:
            stmt = stmt.where(Stage.is_active.is_(is_active))

        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))

        stmt = stmt.order_by(Stage.position, Stage.created_at, Stage.id)
        if limit is not None:
            stmt = stmt.offset((page - 1) * limit).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars()), total or 0

    async def update_stage(self, stage_id: UUID, data: StageUpdate) -> Stage:
        """Apply the fields present in ``data``; position is never edited here."""
        stage = await self.get_stage(stage_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field in ("title", "is_active") and value is None:
                continue
            setattr(stage, field, value)
        await self.session.flush()
        return await self.get_stage(stage.id)

    async def delete_stage(self, stage_id: UUID) -> int:
        """Delete a stage, its leads, and shift later stages down by one.

        Returns the number of leads deleted with the stage.
        """
        stage = await self.get_stage(stage_id)

        lead_ids = list(
            (await self.session.execute(select(Lead.id).where(Lead.stage_id == stage.id))).scalars()
        )
        deleted_leads = await purge_leads(self.session, lead_ids)

        await self.session.execute(
            update(DealCloseRequest)
            .where(DealCloseRequest.previous_stage_id == stage.id)
            .values(previous_stage_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.execute(
            update(Stage)
            .where(Stage.position > stage.position)
            .values(position=Stage.position - 1)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.delete(stage)
        await self.session.flush()

        logger.info(f"Stage {stage_id} deleted along with {deleted_leads} lead(s)")
        return deleted_leads

    # =========================================================================
    # REORDER
    # =========================================================================

    async def reorder_stages(
        self,
        source_index: int,
        destination_index: int,
        actor_role: UserRole,
    ) -> list[Stage]:
        """Move the stage at ``source_index`` to ``destination_index``.

        Every stage's position is rewritten to its index in one flush, and a
        ``stages:reordered`` event is queued for the caller's audience.
        """
        result = await self.session.execute(
            select(Stage).order_by(Stage.position, Stage.created_at, Stage.id)
        )
        stages = list(result.scalars())

        count = len(stages)
        if not (0 <= source_index < count and 0 <= destination_index < count):
            raise BadRequestError("Invalid source or destination index")

        moved = stages.pop(source_index)
        stages.insert(destination_index, moved)
        for index, stage in enumerate(stages):
            if stage.position != index:
                stage.position = index
        await self.session.flush()

        self.outbox.add(
            "stages:reordered",
            {
                "message": "Stages reordered successfully",
                "data": [dump_event(StageResponse.model_validate(stage)) for stage in stages],
            },
            rooms=stage_reorder_rooms(actor_role),
        )
        logger.info(f"Stage moved from index {source_index} to {destination_index}")
        return stages

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_won_stage(self) -> Stage | None:
        """The stage flagged as won; falls back to the highest-position stage."""
        result = await self.session.execute(
            select(Stage)
            .where(Stage.is_terminal == StageOutcome.WON)
            .order_by(Stage.position.desc())
            .limit(1)
        )
        stage = result.scalar_one_or_none()
        if stage is not None:
            return stage

        result = await self.session.execute(
            select(Stage).order_by(Stage.position.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_first_stage(self) -> Stage | None:
        """Entry stage for new leads: lowest-position active stage."""
        result = await self.session.execute(
            select(Stage)
            .order_by(Stage.is_active.desc(), Stage.position)
            .limit(1)
        )
        return result.scalar_one_or_none()
