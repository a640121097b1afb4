"""Event outbox: real-time events collected during a transaction.

Services append events while they work; the route publishes them only
after the session has committed, so clients never hear about writes that
were rolled back.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import utcnow
from .gateway import RealtimeGateway, user_room

logger = logging.getLogger(__name__)


@dataclass
class OutboundEvent:
    event: str
    payload: dict[str, Any]
    rooms: list[str] | None


class EventOutbox:
    """Ordered buffer of events awaiting publication."""

    def __init__(self) -> None:
        self._events: list[OutboundEvent] = []

    def add(
        self,
        event: str,
        payload: dict[str, Any],
        rooms: Iterable[str] | None = None,
    ) -> None:
        stamped = {**payload, "timestamp": payload.get("timestamp") or utcnow().isoformat()}
        self._events.append(
            OutboundEvent(event=event, payload=stamped, rooms=list(rooms) if rooms is not None else None)
        )

    def to_user(self, user_id: UUID, event: str, payload: dict[str, Any]) -> None:
        self.add(event, payload, rooms=[user_room(user_id)])

    @property
    def events(self) -> list[OutboundEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    async def publish(self, gateway: RealtimeGateway) -> int:
        """Emit and drain all events. Emission errors are logged, never raised."""
        events, self._events = self._events, []
        published = 0
        for item in events:
            try:
                await gateway.emit(item.event, item.payload, item.rooms)
                published += 1
            except Exception:
                logger.exception(f"Failed to emit {item.event} to {item.rooms}")
        return published


async def commit_and_publish(
    session: AsyncSession,
    outbox: EventOutbox,
    gateway: RealtimeGateway,
) -> None:
    """Commit the request transaction, then push its events."""
    await session.commit()
    await outbox.publish(gateway)
