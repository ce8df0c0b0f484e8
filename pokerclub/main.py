"""FastAPI application entry point.

Poker club live tournament engine: clock, seating, settlement ledger and
standings behind one HTTP surface.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from pokerclub import __version__
from pokerclub.config import get_settings
from pokerclub.logging_config import clear_context, configure_logging, get_logger
from pokerclub.tournament.api import router as tournament_router, set_engine
from pokerclub.tournament.audit import RedisAuditSink
from pokerclub.tournament.bonus_chips import RedisConfigStore
from pokerclub.tournament.collaborators import (
    InMemoryMembershipDirectory,
    Membership,
    SystemRole,
)
from pokerclub.tournament.engine import TournamentEngine
from pokerclub.tournament.locks import DistributedLockManager
from pokerclub.tournament.permissions import Authorizer
from pokerclub.utils.errors import ErrorCode, GameError
from pokerclub.utils.json_utils import ORJSONResponse
from pokerclub.utils.redis_client import close_redis, init_redis

settings = get_settings()

configure_logging(
    log_level=settings.log_level,
    json_logs=settings.json_logs,
    app_env=settings.app_env,
)
logger = get_logger(__name__)


ERROR_STATUS = {
    ErrorCode.NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.FORBIDDEN.value: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_TRANSITION.value: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_VOIDED.value: status.HTTP_409_CONFLICT,
    ErrorCode.UNBALANCED_SETTLEMENT.value: status.HTTP_409_CONFLICT,
    ErrorCode.FINANCIALS_LOCKED.value: status.HTTP_409_CONFLICT,
    ErrorCode.LOCK_TIMEOUT.value: status.HTTP_409_CONFLICT,
}


# =============================================================================
# Lifespan Events
# =============================================================================


def owner_memberships(raw: str) -> list[Membership]:
    """Parse ``club_id:person_id`` pairs from the club_owners setting."""
    memberships = []
    for pair in filter(None, (p.strip() for p in raw.split(","))):
        club_id, sep, person_id = pair.partition(":")
        if not sep or not club_id or not person_id:
            raise ValueError(f"Invalid club owner entry: {pair}")
        memberships.append(Membership(club_id, person_id, SystemRole.OWNER))
    return memberships


def build_engine(redis_instance=None) -> TournamentEngine:
    """Wire the engine with Redis-backed collaborators when a client is given."""
    memberships = InMemoryMembershipDirectory(owner_memberships(settings.club_owners))
    if redis_instance is None:
        return TournamentEngine(authorizer=Authorizer(memberships), settings=settings)

    return TournamentEngine(
        locks=DistributedLockManager(
            redis_instance,
            default_lock_timeout_ms=settings.lock_timeout_ms,
            default_acquire_timeout_ms=settings.lock_acquire_timeout_ms,
            retry_interval_ms=settings.lock_retry_interval_ms,
        ),
        authorizer=Authorizer(memberships),
        audit=RedisAuditSink(
            redis_instance,
            stream_key=settings.audit_stream_key,
            max_len=settings.audit_stream_max_len,
            hmac_key=settings.audit_hmac_key,
        ),
        config_store=RedisConfigStore(redis_instance, prefix=settings.config_key_prefix),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Starting application...")

    redis_instance = None
    try:
        if settings.use_distributed_locks:
            logger.info("Initializing Redis connection...")
            redis_instance = await init_redis(settings)
            logger.info("Redis connection established")

        engine = build_engine(redis_instance)
        set_engine(engine)
        _app.state.tournament_engine = engine
        logger.info(
            "tournament_engine_initialized",
            distributed=redis_instance is not None,
            overflow_policy=settings.level_overflow_policy,
        )
        logger.info("Application startup complete")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    yield

    logger.info("Shutting down application...")
    try:
        set_engine(None)
        if isinstance(engine.locks, DistributedLockManager):
            released = await engine.locks.cleanup_all()
            logger.info("distributed_locks_released", count=released)
        if redis_instance is not None:
            logger.info("Closing Redis connection...")
            await close_redis()
            logger.info("Redis connection closed")
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title="Poker Club Tournament API",
    version=__version__,
    description="Live tournament engine for poker clubs",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)


# =============================================================================
# Middleware
# =============================================================================


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add X-Request-ID header to all requests and responses."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID")
        if not request_id:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        request.state.start_time = datetime.now(timezone.utc)

        clear_context()
        try:
            response = await call_next(request)
        finally:
            clear_context()

        response.headers["X-Request-ID"] = request_id

        duration = (
            datetime.now(timezone.utc) - request.state.start_time
        ).total_seconds()
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_s=round(duration, 3),
            request_id=request_id,
        )

        return response


app.add_middleware(RequestIDMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================


def get_request_id(request: Request) -> str:
    """Get request ID from request state or headers."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("X-Request-ID", str(uuid.uuid4()))


def create_error_response(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    trace_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response."""
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
        "traceId": trace_id,
    }


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError) -> ORJSONResponse:
    """Handle engine errors. None of them is fatal; the operator gets the reason."""
    trace_id = get_request_id(request)
    status_code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)

    logger.warning("game_error", code=exc.code, message=exc.message, trace_id=trace_id)

    return ORJSONResponse(
        status_code=status_code,
        content=create_error_response(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id,
        ),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    """Handle malformed request bodies, headers and query parameters."""
    trace_id = get_request_id(request)
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=create_error_response(
            code=ErrorCode.INVALID_REQUEST.value,
            message="Invalid request",
            details={"errors": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                for err in exc.errors()
            ]},
            trace_id=trace_id,
        ),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(
    request: Request, exc: HTTPException
) -> ORJSONResponse:
    """Handle HTTP exceptions."""
    trace_id = get_request_id(request)

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
        content["traceId"] = trace_id
    else:
        content = create_error_response(
            code="HTTP_ERROR",
            message=str(exc.detail),
            trace_id=trace_id,
        )

    return ORJSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    """Handle unexpected exceptions."""
    trace_id = get_request_id(request)

    logger.error(
        "unexpected_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
        trace_id=trace_id,
        exc_info=True,
    )

    # Don't expose internal error details in production
    message = "Internal server error"
    if settings.app_debug:
        message = f"{type(exc).__name__}: {exc}"

    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            code=ErrorCode.INTERNAL_ERROR.value,
            message=message,
            trace_id=trace_id,
        ),
    )


# =============================================================================
# Health Check Endpoints
# =============================================================================


@app.get("/health", tags=["Health"], summary="Health check endpoint")
async def health_check() -> dict[str, Any]:
    """Liveness plus the engine's wiring mode."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "services": {
            "engine": "ready" if hasattr(app.state, "tournament_engine") else "starting",
            "locks": "redis" if settings.use_distributed_locks else "local",
        },
    }


# =============================================================================
# Routers
# =============================================================================


app.include_router(tournament_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pokerclub.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
    )
