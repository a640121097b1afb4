"""Dealflow: Main FastAPI Application.

A sales pipeline backend: ordered stages, leads, an approval workflow
for closing deals, notifications and real-time push over WebSockets.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import api_router, realtime_router
from .core import DealflowError, async_session_factory, close_db, get_settings, init_db
from .core.logging import configure_logging
from .jobs import JobScheduler
from .realtime import RealtimeGateway
from .schemas import ErrorResponse

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    configure_logging(settings.log_level, settings.log_json)
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    if settings.create_tables_on_startup:
        await init_db()

    gateway = RealtimeGateway(
        pending_ttl_seconds=settings.realtime_pending_ttl_seconds,
        pending_limit=settings.realtime_pending_limit,
    )
    await gateway.start()
    app.state.gateway = gateway

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = JobScheduler.from_settings(async_session_factory, gateway)
        scheduler.start()

    yield

    if scheduler is not None:
        await scheduler.stop()
    await gateway.stop()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Dealflow API

    Pipeline stages, leads and the deal-close approval workflow.

    ### Authentication

    Endpoints require a JWT in the `Authorization: Bearer <token>` header
    or the `accessToken` cookie. The WebSocket endpoint `/ws` accepts the
    same token as a `token` query parameter.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================


@app.exception_handler(DealflowError)
async def dealflow_exception_handler(request: Request, exc: DealflowError):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.message).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail)).model_dump(exclude_none=True),
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"path": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(message="Validation error", errors=errors).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    message = str(exc)[:200] if settings.debug else "An unexpected error occurred"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(message=message).model_dump(exclude_none=True),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)
app.include_router(realtime_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dealflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
