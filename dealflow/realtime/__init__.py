"""Real-time push: WebSocket gateway and the transactional event outbox."""

from .dependencies import GatewayDep, OutboxDep, get_gateway, get_outbox
from .gateway import Connection, RealtimeGateway, role_room, user_room
from .outbox import EventOutbox, OutboundEvent, commit_and_publish

__all__ = [
    "Connection",
    "EventOutbox",
    "GatewayDep",
    "OutboundEvent",
    "OutboxDep",
    "RealtimeGateway",
    "commit_and_publish",
    "get_gateway",
    "get_outbox",
    "role_room",
    "user_room",
]
