"""Task service: to-do items with completion credit for the assignee."""

import logging
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ForbiddenError, NotFoundError
from ..models import Lead, Task, TaskStatus, User, UserRole, utcnow
from ..realtime import EventOutbox, role_room, user_room
from ..schemas import TaskCreate, TaskResponse, TaskUpdate, dump_event
from .notification_helpers import notify_task_assigned, notify_task_created
from .notifications import NotificationService

logger = logging.getLogger(__name__)


class TaskService:
    """Service for managing tasks."""

    def __init__(self, session: AsyncSession, outbox: EventOutbox | None = None):
        self.session = session
        self.outbox = outbox if outbox is not None else EventOutbox()
        self.notifications = NotificationService(session, self.outbox)

    async def get_task(self, task_id: UUID, viewer: User | None = None) -> Task:
        result = await self.session.execute(
            select(Task).where(Task.id == task_id).execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise NotFoundError("Task not found")
        if (
            viewer is not None
            and viewer.role == UserRole.REPRESENTATIVE
            and viewer.id not in (task.assign_to_id, task.created_by_id)
        ):
            raise ForbiddenError("You do not have access to this task")
        return task

    async def list_tasks(
        self,
        viewer: User,
        status: TaskStatus | None = None,
        lead_id: UUID | None = None,
        assign_to_id: UUID | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Task], int]:
        """Tasks newest first; representatives only see their own."""
        stmt = select(Task)
        if viewer.role == UserRole.REPRESENTATIVE:
            stmt = stmt.where(or_(Task.assign_to_id == viewer.id, Task.created_by_id == viewer.id))
        if status is not None:
            stmt = stmt.where(Task.status == status)
        if lead_id is not None:
            stmt = stmt.where(Task.lead_id == lead_id)
        if assign_to_id is not None:
            stmt = stmt.where(Task.assign_to_id == assign_to_id)
        if search:
            stmt = stmt.where(Task.title.ilike(f"%{search}%"))

        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.session.execute(
            stmt.order_by(Task.created_at.desc(), Task.id).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars()), total or 0

    async def create_task(self, data: TaskCreate, actor: User) -> Task:
        """Create a task, notify the people involved and push ``task:created``."""
        if data.lead_id is not None and await self.session.get(Lead, data.lead_id) is None:
            raise NotFoundError("Lead not found")
        if data.assign_to_id is not None and await self.session.get(User, data.assign_to_id) is None:
            raise NotFoundError("User not found")

        task = Task(
            title=data.title,
            description=data.description,
            lead_id=data.lead_id,
            assign_to_id=data.assign_to_id,
            created_by_id=actor.id,
            status=data.status,
            due_date=data.due_date,
            performance_point=data.performance_point,
            completed_at=utcnow() if data.status == TaskStatus.COMPLETED else None,
        )
        self.session.add(task)
        await self.session.flush()

        if task.status == TaskStatus.COMPLETED:
            await self._credit_completion(task)

        await notify_task_created(self.notifications, task, actor.id)

        task = await self.get_task(task.id)
        rooms = [user_room(actor.id), role_room(UserRole.ADMIN), role_room(UserRole.SUPER_ADMIN)]
        if task.assign_to_id is not None:
            rooms.insert(0, user_room(task.assign_to_id))
        self.outbox.add(
            "task:created",
            {"message": "New task created", "data": dump_event(TaskResponse.model_validate(task))},
            rooms=list(dict.fromkeys(rooms)),
        )

        logger.info(f"Task {task.id} created by {actor.id}")
        return task

    async def update_task(self, task_id: UUID, data: TaskUpdate, actor: User) -> Task:
        task = await self.get_task(task_id, viewer=actor)
        changes = data.model_dump(exclude_unset=True)
        was_completed = task.status == TaskStatus.COMPLETED

        new_assignee = changes.pop("assign_to_id", task.assign_to_id)
        reassigned = new_assignee != task.assign_to_id
        if reassigned:
            if new_assignee is not None and await self.session.get(User, new_assignee) is None:
                raise NotFoundError("User not found")
            task.assign_to_id = new_assignee

        for field, value in changes.items():
            if field in ("title", "status", "performance_point") and value is None:
                continue
            setattr(task, field, value)

        completing = task.status == TaskStatus.COMPLETED and not was_completed
        if completing:
            task.completed_at = utcnow()
        elif task.status != TaskStatus.COMPLETED:
            task.completed_at = None
        await self.session.flush()

        if completing:
            await self._credit_completion(task)
        if reassigned and new_assignee is not None:
            await notify_task_assigned(self.notifications, task, new_assignee, actor.id)

        return await self.get_task(task.id)

    async def delete_task(self, task_id: UUID, actor: User) -> None:
        task = await self.get_task(task_id)
        if not actor.is_admin and task.created_by_id != actor.id:
            raise ForbiddenError("Only admins or the task creator can delete a task")
        await self.session.delete(task)
        await self.session.flush()
        logger.info(f"Task {task_id} deleted by {actor.id}")

    async def _credit_completion(self, task: Task) -> None:
        """Credit the assignee, else the creator, with a completed task."""
        user_id = task.assign_to_id or task.created_by_id
        if user_id is None:
            return
        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                tasks_completed=User.tasks_completed + 1,
                performance_point=User.performance_point + task.performance_point,
            )
            .execution_options(synchronize_session="fetch")
        )
