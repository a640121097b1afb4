"""FastAPI dependencies for the gateway and per-request outbox."""

from typing import Annotated

from fastapi import Depends, Request

from .gateway import RealtimeGateway
from .outbox import EventOutbox


def get_gateway(request: Request) -> RealtimeGateway:
    """The gateway constructed by the application lifespan."""
    return request.app.state.gateway


def get_outbox() -> EventOutbox:
    """A fresh outbox per request."""
    return EventOutbox()


GatewayDep = Annotated[RealtimeGateway, Depends(get_gateway)]
OutboxDep = Annotated[EventOutbox, Depends(get_outbox)]
