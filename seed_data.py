#!/usr/bin/env python3
"""
Seed Data Script for Dealflow

Creates a small sales team scenario with:
- 4 Users (Sara super admin, Omar admin, Rina and Tanvir representatives)
- 5 Pipeline stages (New, Contacted, Proposal, Won, Lost)
- Several leads across the pipeline, one with a pending close request
- Activities due today and tomorrow so the reminder jobs have work

Prints an access token per user for trying the API and the WebSocket.

Run with: python seed_data.py
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from dealflow.core import async_session_factory, close_db, create_access_token, get_settings, init_db
from dealflow.models import (
    ActivityType,
    CloseRequestStatus,
    Currency,
    DealCloseRequest,
    DealStatus,
    Lead,
    LeadActivity,
    LeadHistory,
    LeadHistoryAction,
    Notification,
    NotificationRead,
    Stage,
    StageOutcome,
    Task,
    User,
    UserRole,
    notification_recipients,
    user_converted_leads,
    utcnow,
)

settings = get_settings()


async def clear_database(session: AsyncSession) -> None:
    """Remove existing rows, children first."""
    for table in (
        user_converted_leads,
        notification_recipients,
        NotificationRead.__table__,
        Notification.__table__,
        Task.__table__,
        DealCloseRequest.__table__,
        LeadHistory.__table__,
        LeadActivity.__table__,
        Lead.__table__,
        Stage.__table__,
        User.__table__,
    ):
        await session.execute(delete(table))
    await session.flush()


async def seed_database():
    """Main seeding function."""
    await init_db()

    async with async_session_factory() as session:
        print("🌱 Starting database seed...")
        await clear_database(session)

        # =================================================================
        # CREATE USERS
        # =================================================================
        print("\n👥 Creating users...")

        sara = User(name="Sara Rahman", email="sara@dealflow.dev", role=UserRole.SUPER_ADMIN)
        omar = User(name="Omar Faruk", email="omar@dealflow.dev", role=UserRole.ADMIN)
        rina = User(
            name="Rina Akter",
            email="rina@dealflow.dev",
            role=UserRole.REPRESENTATIVE,
            incentive_percentage=Decimal("5.00"),
        )
        tanvir = User(
            name="Tanvir Hasan",
            email="tanvir@dealflow.dev",
            role=UserRole.REPRESENTATIVE,
            incentive_percentage=Decimal("4.50"),
        )
        users = [sara, omar, rina, tanvir]
        session.add_all(users)
        await session.flush()

        for user in users:
            print(f"   ✓ {user.name} ({user.role.value})")

        # =================================================================
        # CREATE STAGES
        # =================================================================
        print("\n📊 Creating pipeline stages...")

        stage_rows = [
            ("New", None),
            ("Contacted", None),
            ("Proposal", None),
            ("Won", StageOutcome.WON),
            ("Lost", StageOutcome.LOST),
        ]
        stages = {}
        for position, (title, outcome) in enumerate(stage_rows):
            stage = Stage(title=title, position=position, is_terminal=outcome, created_by_id=sara.id)
            session.add(stage)
            stages[title] = stage
        await session.flush()

        for title in stages:
            print(f"   ✓ {title}")

        # =================================================================
        # CREATE LEADS
        # =================================================================
        print("\n💼 Creating leads...")

        now = utcnow()
        lead_rows = [
            ("Website redesign", "Karim Traders", "New", rina, Decimal("120000")),
            ("ERP rollout", "Meghna Foods", "Contacted", rina, Decimal("850000")),
            ("Mobile app", "Padma Logistics", "Proposal", tanvir, Decimal("430000")),
            ("Cloud migration", "Jamuna Textiles", "Proposal", rina, Decimal("610000")),
        ]
        leads = {}
        for title, name, stage_title, owner, budget in lead_rows:
            lead = Lead(
                title=title,
                name=name,
                email=f"contact@{name.split()[0].lower()}.example",
                stage_id=stages[stage_title].id,
                assigned_to_id=owner.id,
                created_by_id=omar.id,
                budget=budget,
                currency=Currency.BDT,
                attachments=[],
                notes=[],
            )
            session.add(lead)
            leads[title] = lead
        omar.total_leads = len(lead_rows)
        await session.flush()

        for lead in leads.values():
            session.add(
                LeadHistory(
                    lead_id=lead.id,
                    action=LeadHistoryAction.CREATED.value,
                    changed_by_id=omar.id,
                    timestamp=now,
                    description=f"Lead created by {omar.name}",
                )
            )
            print(f"   ✓ {lead.title} ({lead.name})")

        # =================================================================
        # ACTIVITIES
        # =================================================================
        print("\n📅 Scheduling activities...")

        session.add_all(
            [
                LeadActivity(
                    lead_id=leads["ERP rollout"].id,
                    type=ActivityType.CALL,
                    date=now + timedelta(hours=2),
                    added_by_id=rina.id,
                    note="Follow up on module list",
                ),
                LeadActivity(
                    lead_id=leads["Mobile app"].id,
                    type=ActivityType.MEETING,
                    date=now + timedelta(days=1),
                    added_by_id=tanvir.id,
                    meeting_type="online",
                    meeting_link="https://meet.example/padma",
                ),
                LeadActivity(
                    lead_id=leads["Website redesign"].id,
                    type=ActivityType.EMAIL,
                    date=now - timedelta(days=2),
                    added_by_id=rina.id,
                    note="Send portfolio",
                ),
            ]
        )
        print("   ✓ 1 due today, 1 due tomorrow, 1 overdue")

        # =================================================================
        # PENDING CLOSE REQUEST
        # =================================================================
        print("\n🤝 Creating a pending close request...")

        cloud = leads["Cloud migration"]
        cloud.deal_status = DealStatus.CLOSING_REQUESTED
        cloud.closing_requested_at = now
        session.add(
            DealCloseRequest(
                lead_id=cloud.id,
                representative_id=rina.id,
                requested_at=now,
                status=CloseRequestStatus.PENDING,
                incentive_currency=settings.incentive_currency,
                previous_stage_id=cloud.stage_id,
            )
        )
        print(f"   ✓ {rina.name} asked to close \"{cloud.title}\"")

        await session.commit()

    await close_db()

    print("\n🔑 Access tokens:")
    for user in users:
        token = create_access_token(user.id, user.role, email=user.email)
        print(f"   {user.name} ({user.role.value}):\n   {token}\n")

    print("✅ Seed complete!")


if __name__ == "__main__":
    asyncio.run(seed_database())
