"""SQLAlchemy ORM Models for Dealflow.

Embedded arrays of the CRM documents are stored relationally: lead history
and activities are child tables, notification recipients and read receipts
are association tables, and a user's converted leads live in
``user_converted_leads``.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    HR = "hr"
    REPRESENTATIVE = "representative"


ADMIN_ROLES = (UserRole.SUPER_ADMIN, UserRole.ADMIN)


class StageOutcome(str, PyEnum):
    """Terminal flag for a pipeline stage."""
    WON = "won"
    LOST = "lost"


class DealStatus(str, PyEnum):
    OPEN = "open"
    CLOSING_REQUESTED = "closing_requested"
    CLOSED = "closed"
    LOST = "lost"


class Currency(str, PyEnum):
    BDT = "BDT"
    USD = "USD"
    EUR = "EUR"


class ActivityType(str, PyEnum):
    CALL = "call"
    MEETING = "meeting"
    EMAIL = "email"
    CUSTOM = "custom"


class CloseRequestStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationType(str, PyEnum):
    TASK = "task"
    LEAD = "lead"
    SYSTEM = "system"


class NotificationEntityType(str, PyEnum):
    TASK = "Task"
    LEAD = "Lead"
    USER = "User"


class TaskStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class LeadHistoryAction(str, PyEnum):
    CREATED = "created"
    UPDATED = "updated"
    STAGE_CHANGED = "stage_changed"
    ASSIGNED = "assigned"
    NOTE_ADDED = "note_added"
    ACTIVITY_ADDED = "activity_added"
    ACTIVITY_COMPLETED = "activity_completed"
    ACTIVITY_OVERDUE = "activity_overdue"
    DEAL_CLOSE_REQUESTED = "deal_close_requested"
    DEAL_CLOSED = "deal_closed"
    DEAL_CLOSE_REJECTED = "deal_close_rejected"
    DEAL_LOST = "deal_lost"
    DEAL_CLOSE_REQUEST_DELETED = "deal_close_request_deleted"


# =============================================================================
# ASSOCIATION TABLES
# =============================================================================


user_converted_leads = Table(
    "user_converted_leads",
    Base.metadata,
    Column("user_id", Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("lead_id", Uuid(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), primary_key=True),
    Column("converted_at", DateTime(timezone=True), default=utcnow, nullable=False),
)

notification_recipients = Table(
    "notification_recipients",
    Base.metadata,
    Column(
        "notification_id",
        Uuid(as_uuid=True),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("user_id", Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


# =============================================================================
# USERS
# =============================================================================


class User(Base, UUIDMixin, TimestampMixin):
    """CRM user. Identity and credentials are managed by the auth service."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"),
        default=UserRole.REPRESENTATIVE,
        nullable=False,
    )
    incentive_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    performance_point: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_leads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


# =============================================================================
# PIPELINE STAGES
# =============================================================================


class Stage(Base, UUIDMixin, TimestampMixin):
    """A pipeline column. Positions are dense and 0-based after a reorder."""

    __tablename__ = "stages"

    title: Mapped[str] = mapped_column(String(120), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_terminal: Mapped[StageOutcome | None] = mapped_column(
        _enum(StageOutcome, "stage_outcome"),
        nullable=True,
    )
    created_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_by: Mapped[User | None] = relationship(lazy="selectin")


# =============================================================================
# LEADS
# =============================================================================


class Lead(Base, UUIDMixin, TimestampMixin):
    """A sales lead moving through the pipeline."""

    __tablename__ = "leads"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    stage_id: Mapped[UUID] = mapped_column(
        ForeignKey("stages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_to_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    budget: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    currency: Mapped[Currency] = mapped_column(
        _enum(Currency, "lead_currency"), default=Currency.USD, nullable=False
    )
    attachments: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    notes: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    quick_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    follow_up_date: Mapped[datetime | None] = mapped_column(nullable=True)

    # Deal workflow
    deal_status: Mapped[DealStatus] = mapped_column(
        _enum(DealStatus, "deal_status"), default=DealStatus.OPEN, nullable=False, index=True
    )
    closing_requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    lost_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    deal_rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    stage: Mapped[Stage] = relationship(lazy="selectin")
    assigned_to: Mapped[User | None] = relationship(foreign_keys=[assigned_to_id], lazy="selectin")
    created_by: Mapped[User | None] = relationship(foreign_keys=[created_by_id], lazy="selectin")
    closed_by: Mapped[User | None] = relationship(foreign_keys=[closed_by_id], lazy="selectin")
    history: Mapped[list["LeadHistory"]] = relationship(
        back_populates="lead",
        order_by="LeadHistory.timestamp",
        passive_deletes=True,
    )
    activities: Mapped[list["LeadActivity"]] = relationship(
        back_populates="lead",
        order_by="LeadActivity.date",
        passive_deletes=True,
    )

    @property
    def owner_id(self) -> UUID | None:
        """The user credited with a conversion: assignee, else creator."""
        return self.assigned_to_id or self.created_by_id


class LeadHistory(Base, UUIDMixin):
    """Append-only audit entry for a lead."""

    __tablename__ = "lead_history"

    lead_id: Mapped[UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    field: Mapped[str | None] = mapped_column(String(64), nullable=True)
    old_value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    changed_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    timestamp: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    overdue_notification_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    lead: Mapped[Lead] = relationship(back_populates="history")
    changed_by: Mapped[User | None] = relationship(lazy="selectin")


class LeadActivity(Base, UUIDMixin, TimestampMixin):
    """A scheduled call, meeting, email or custom follow-up on a lead."""

    __tablename__ = "lead_activities"

    lead_id: Mapped[UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[ActivityType] = mapped_column(_enum(ActivityType, "activity_type"), nullable=False)
    date: Mapped[datetime] = mapped_column(nullable=False, index=True)
    added_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    meeting_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meeting_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Job bookkeeping
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    marked_as_overdue: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    lead: Mapped[Lead] = relationship(back_populates="activities")


# =============================================================================
# DEAL CLOSE REQUESTS
# =============================================================================


class DealCloseRequest(Base, UUIDMixin, TimestampMixin):
    """A representative's request for an admin to close a deal as won."""

    __tablename__ = "deal_close_requests"
    __table_args__ = (
        # At most one pending request per lead
        Index(
            "uq_deal_close_requests_pending_lead",
            "lead_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    lead_id: Mapped[UUID] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    representative_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    status: Mapped[CloseRequestStatus] = mapped_column(
        _enum(CloseRequestStatus, "close_request_status"),
        default=CloseRequestStatus.PENDING,
        nullable=False,
        index=True,
    )
    approved_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    incentive_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    incentive_currency: Mapped[str] = mapped_column(String(3), default="BDT", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_stage_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("stages.id", ondelete="SET NULL"), nullable=True
    )

    lead: Mapped[Lead] = relationship(lazy="selectin")
    representative: Mapped[User] = relationship(foreign_keys=[representative_id], lazy="selectin")
    approved_by: Mapped[User | None] = relationship(foreign_keys=[approved_by_id], lazy="selectin")
    rejected_by: Mapped[User | None] = relationship(foreign_keys=[rejected_by_id], lazy="selectin")
    previous_stage: Mapped[Stage | None] = relationship(lazy="selectin")


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notification(Base, UUIDMixin):
    """One persisted notification delivered to a set of recipients."""

    __tablename__ = "notifications"

    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[NotificationEntityType | None] = mapped_column(
        _enum(NotificationEntityType, "notification_entity_type"), nullable=True
    )
    entity_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    triggered_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False, index=True)

    triggered_by: Mapped[User | None] = relationship(lazy="selectin")
    recipients: Mapped[list[User]] = relationship(secondary=notification_recipients, lazy="selectin")
    read_receipts: Mapped[list["NotificationRead"]] = relationship(
        back_populates="notification",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def recipient_ids(self) -> list[UUID]:
        return [user.id for user in self.recipients]

    def is_read_by(self, user_id: UUID) -> bool:
        return any(receipt.user_id == user_id for receipt in self.read_receipts)


class NotificationRead(Base, UUIDMixin):
    """Read receipt; one per (notification, user)."""

    __tablename__ = "notification_reads"
    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_notification_reads_notification_user"),
    )

    notification_id: Mapped[UUID] = mapped_column(
        ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    read_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    notification: Mapped[Notification] = relationship(back_populates="read_receipts")


# =============================================================================
# TASKS
# =============================================================================


class Task(Base, UUIDMixin, TimestampMixin):
    """A to-do item, optionally attached to a lead."""

    __tablename__ = "tasks"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    lead_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("leads.id", ondelete="CASCADE"), nullable=True, index=True
    )
    assign_to_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[TaskStatus] = mapped_column(
        _enum(TaskStatus, "task_status"), default=TaskStatus.PENDING, nullable=False
    )
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    performance_point: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    lead: Mapped[Lead | None] = relationship(lazy="selectin")
    assign_to: Mapped[User | None] = relationship(foreign_keys=[assign_to_id], lazy="selectin")
    created_by: Mapped[User | None] = relationship(foreign_keys=[created_by_id], lazy="selectin")
