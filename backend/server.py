"""
Customer Core API - application factory

Run with:
    uvicorn server:create_app --factory --app-dir backend
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import Settings, get_settings, get_cors_config, validate_environment
from customers.exceptions import (
    CustomerCoreError,
    ValidationFailedError,
    RecordNotFoundError,
    ConflictError,
    OptimisticLockError,
    InvalidStatusTransitionError,
)
from customers.router import router as customers_router
from database import create_engine_from_settings, init_db, check_database_health
from logging_config import setup_logging, set_request_context, clear_request_context, get_request_id
from sentry_integration import init_sentry, capture_exception
from utils.encryption import EncryptionError, FieldCipher
from utils.validation_errors import ValidationErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    settings: Settings = app.state.settings

    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.is_production,
        service_name=settings.SERVICE_NAME,
    )
    if settings.SENTRY_DSN:
        init_sentry(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=settings.API_VERSION,
            traces_sample_rate=0.1 if settings.is_production else 0.0,
        )

    logger.info("=" * 60)
    logger.info(f"Starting {settings.API_TITLE}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug Mode: {settings.debug_enabled}")
    logger.info("=" * 60)

    env_status = validate_environment(settings)
    if not env_status["valid"]:
        for error in env_status["errors"]:
            logger.error(f"Configuration Error: {error}")
        if settings.is_production:
            raise RuntimeError("Cannot start in production with invalid configuration")

    for warning in env_status.get("warnings", []):
        logger.warning(f"Configuration Warning: {warning}")

    app.state.cipher = FieldCipher.from_setting(settings.get_encryption_key())
    app.state.engine = create_engine_from_settings(settings)

    try:
        await init_db(app.state.engine)
        logger.info("PostgreSQL connection established")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        await app.state.engine.dispose()
        raise

    logger.info(f"{settings.API_TITLE} started successfully")

    yield

    logger.info(f"Shutting down {settings.API_TITLE}...")
    await app.state.engine.dispose()


# ==================== ERROR RESPONSES ====================

def _error_response(status_code: int, body: dict) -> JSONResponse:
    body.setdefault("request_id", get_request_id())
    return JSONResponse(status_code=status_code, content=body)


async def validation_failed_handler(request: Request, exc: ValidationFailedError):
    return _error_response(422, ValidationErrorResponse.validation_error(
        "Validation failed", [e.to_dict() for e in exc.errors]
    ))


async def not_found_handler(request: Request, exc: RecordNotFoundError):
    return _error_response(404, ValidationErrorResponse.domain_error(
        "not_found", exc.code, str(exc),
        entity_type=exc.entity_type, entity_id=exc.entity_id,
    ))


async def conflict_handler(request: Request, exc: ConflictError):
    details = {}
    if isinstance(exc, OptimisticLockError):
        details = {"entity_id": exc.entity_id, "expected_version": exc.expected_version}
    return _error_response(409, ValidationErrorResponse.domain_error(
        "conflict", exc.code, str(exc), **details
    ))


async def invalid_transition_handler(request: Request, exc: InvalidStatusTransitionError):
    return _error_response(412, ValidationErrorResponse.domain_error(
        "invalid_status_transition", exc.code, str(exc),
        current_status=exc.current_status, requested_status=exc.requested_status,
    ))


async def internal_error_handler(request: Request, exc: Exception):
    """Persistence, encryption and other internal failures: logged, never exposed."""
    request_id = get_request_id()
    logger.error(
        f"[{request_id}] Internal error on {request.method} {request.url.path}: {type(exc).__name__}",
        exc_info=exc,
    )
    capture_exception(exc, request_id=request_id, path=request.url.path)
    return JSONResponse(status_code=500, content=ValidationErrorResponse.internal_error(request_id))


# ==================== APP FACTORY ====================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application; engine and cipher are created at startup."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.API_TITLE,
        description="""
    Customer record management API.

    ### Customers (/api/v1/customers)
    - Create, read, update (optimistic locking) and delete customers
    - Status lifecycle: Pending, Active, Inactive, Suspended, Closed
    - Addresses with a single primary address per customer
    - Identification documents (numbers encrypted at rest, returned masked)
    - Full profile with status history
    """,
        version=settings.API_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug_enabled else None,
        redoc_url="/api/redoc" if settings.debug_enabled else None,
    )
    app.state.settings = settings

    app.include_router(customers_router)

    # ==================== EXCEPTION HANDLERS ====================

    app.add_exception_handler(ValidationFailedError, validation_failed_handler)
    app.add_exception_handler(RecordNotFoundError, not_found_handler)
    app.add_exception_handler(ConflictError, conflict_handler)
    app.add_exception_handler(InvalidStatusTransitionError, invalid_transition_handler)
    app.add_exception_handler(CustomerCoreError, internal_error_handler)
    app.add_exception_handler(EncryptionError, internal_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # ==================== MIDDLEWARE ====================

    @app.middleware("http")
    async def request_timeout(request: Request, call_next):
        """Bound request processing time"""
        timeout = settings.REQUEST_TIMEOUT_SECONDS
        if not timeout:
            return await call_next(request)
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"[{get_request_id()}] {request.method} {request.url.path} timed out after {timeout}s")
            return JSONResponse(
                status_code=504,
                content={
                    "error": "timeout",
                    "code": "REQUEST_TIMEOUT",
                    "message": "Request timed out",
                    "request_id": get_request_id(),
                },
            )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        """Assign a request id, expose it in logs and response headers"""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        actor = request.headers.get("X-Actor") or "system"
        set_request_context(request_id, actor)

        if settings.debug_enabled:
            logger.debug(f"[{request_id}] {request.method} {request.url.path}")

        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                # Handled here while the request context is still set
                response = await internal_error_handler(request, exc)

            process_time = time.time() - start_time
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

            if settings.debug_enabled or response.status_code >= 400:
                logger.info(
                    f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)"
                )
            return response
        finally:
            clear_request_context()

    # CORS middleware with production-safe configuration (outermost)
    app.add_middleware(CORSMiddleware, **get_cors_config(settings))

    # ==================== HEALTH CHECK ====================

    @app.get("/health", tags=["Health"])
    async def health(request: Request):
        database = await check_database_health(request.app.state.engine)
        healthy = database["status"] == "healthy"
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "service": settings.SERVICE_NAME,
                "environment": settings.ENVIRONMENT,
                "version": settings.API_VERSION,
                "database": database,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return app
