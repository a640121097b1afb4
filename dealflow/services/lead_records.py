"""Shared lead bookkeeping: conversion credit, history entries and purges.

Used by the stage, lead and deal-close-request services, which would
otherwise import each other.
"""

import logging
from typing import Any, Sequence
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import case, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    DealCloseRequest,
    Lead,
    LeadActivity,
    LeadHistory,
    LeadHistoryAction,
    Task,
    User,
    user_converted_leads,
    utcnow,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONVERTED LEADS
# =============================================================================


async def add_converted_lead(session: AsyncSession, user_id: UUID, lead_id: UUID) -> bool:
    """Credit a conversion to a user. Returns False if already credited."""
    existing = await session.scalar(
        select(func.count())
        .select_from(user_converted_leads)
        .where(
            user_converted_leads.c.user_id == user_id,
            user_converted_leads.c.lead_id == lead_id,
        )
    )
    if existing:
        return False

    await session.execute(
        insert(user_converted_leads).values(user_id=user_id, lead_id=lead_id, converted_at=utcnow())
    )
    logger.info(f"Lead {lead_id} added to converted leads of user {user_id}")
    return True


async def remove_converted_lead(
    session: AsyncSession,
    lead_id: UUID,
    user_id: UUID | None = None,
) -> int:
    """Withdraw conversion credit for a lead, from one user or from everyone."""
    stmt = delete(user_converted_leads).where(user_converted_leads.c.lead_id == lead_id)
    if user_id is not None:
        stmt = stmt.where(user_converted_leads.c.user_id == user_id)
    result = await session.execute(stmt)
    if result.rowcount:
        logger.info(f"Lead {lead_id} removed from {result.rowcount} converted-lead list(s)")
    return result.rowcount


async def converted_lead_ids(session: AsyncSession, user_id: UUID) -> list[UUID]:
    result = await session.execute(
        select(user_converted_leads.c.lead_id)
        .where(user_converted_leads.c.user_id == user_id)
        .order_by(user_converted_leads.c.converted_at)
    )
    return list(result.scalars())


# =============================================================================
# HISTORY
# =============================================================================


def record_history(
    session: AsyncSession,
    lead_id: UUID,
    action: LeadHistoryAction,
    changed_by_id: UUID | None,
    description: str | None = None,
    field: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
    overdue_notification_sent: bool = False,
) -> LeadHistory:
    """Append a history entry; flushed with the caller's next flush."""
    entry = LeadHistory(
        lead_id=lead_id,
        action=action.value,
        field=field,
        old_value=jsonable_encoder(old_value),
        new_value=jsonable_encoder(new_value),
        changed_by_id=changed_by_id,
        timestamp=utcnow(),
        description=description,
        overdue_notification_sent=overdue_notification_sent,
    )
    session.add(entry)
    return entry


# =============================================================================
# PURGE
# =============================================================================


async def purge_leads(session: AsyncSession, lead_ids: Sequence[UUID]) -> int:
    """Hard-delete leads and everything hanging off them.

    Decrements each creator's ``total_leads`` and removes the leads from
    every user's converted leads before deleting tasks, close requests,
    history, activities and finally the leads.
    """
    ids = list(lead_ids)
    if not ids:
        return 0

    creator_counts = await session.execute(
        select(Lead.created_by_id, func.count(Lead.id))
        .where(Lead.id.in_(ids), Lead.created_by_id.is_not(None))
        .group_by(Lead.created_by_id)
    )
    for creator_id, count in creator_counts.all():
        await session.execute(
            update(User)
            .where(User.id == creator_id)
            .values(
                total_leads=case(
                    (User.total_leads >= count, User.total_leads - count),
                    else_=0,
                )
            )
            .execution_options(synchronize_session="fetch")
        )

    await session.execute(delete(user_converted_leads).where(user_converted_leads.c.lead_id.in_(ids)))
    await session.execute(delete(Task).where(Task.lead_id.in_(ids)))
    await session.execute(delete(DealCloseRequest).where(DealCloseRequest.lead_id.in_(ids)))
    await session.execute(delete(LeadHistory).where(LeadHistory.lead_id.in_(ids)))
    await session.execute(delete(LeadActivity).where(LeadActivity.lead_id.in_(ids)))
    result = await session.execute(delete(Lead).where(Lead.id.in_(ids)))

    logger.info(f"Purged {result.rowcount} lead(s) with their tasks, requests and history")
    return result.rowcount
