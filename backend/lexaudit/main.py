import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import configure_mappers
from datetime import datetime, timezone

from lexaudit.api.v1 import audit
from lexaudit.audit.errors import AuditValidationError, ImmutabilityViolation, StorageError
from lexaudit.audit.middleware import AuditMiddleware
from lexaudit.audit.session_hooks import register_audit_hooks
from lexaudit.core.config import settings
from lexaudit.core.database import async_session_maker, engine

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def verify_orm_mappings() -> None:
    """
    Verify all SQLAlchemy ORM mappings are valid at startup.

    This catches configuration errors early before any requests are processed.
    """
    from lexaudit.models import AuditLog  # noqa: F401

    configure_mappers()
    logger.info("ORM mapper configuration verified successfully")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.

    Startup:
    - Verify ORM mappings to fail fast if models are misconfigured
    - Register the audit log immutability guard on the session factory

    Shutdown:
    - Dispose the database engine
    """
    try:
        verify_orm_mappings()
    except Exception as e:
        logger.critical(f"ORM mapper configuration failed: {e}")
        raise RuntimeError(f"Application cannot start: ORM mapping error - {e}") from e

    register_audit_hooks(async_session_maker)

    yield

    await engine.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(AuditMiddleware)

# CORS middleware - added last so it wraps everything, including error responses
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuditValidationError)
async def audit_validation_exception_handler(request: Request, exc: AuditValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ImmutabilityViolation)
async def immutability_exception_handler(request: Request, exc: ImmutabilityViolation):
    return JSONResponse(
        status_code=405,
        content={"detail": str(exc), "code": "AUDIT_LOG_IMMUTABLE"},
    )


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    logger.error(f"Audit storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Audit log storage unavailable"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler to ensure JSON responses with proper CORS headers.

    HTTPException is handled by FastAPI's default handler and will not reach
    this handler, preserving intended status codes.
    """
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
        },
    )

# API v1 router
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(audit.router, prefix="/security", tags=["security-audit"])

app.include_router(api_v1_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Verifies database connectivity; returns HTTP 200 with the component
    status either way.
    """
    health = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "database": {"status": "unknown", "message": None},
        }
    }

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        health["components"]["database"]["status"] = "healthy"
        health["components"]["database"]["message"] = "Connected"
    except Exception as e:
        health["components"]["database"]["status"] = "unhealthy"
        health["components"]["database"]["message"] = str(e)
        health["status"] = "unhealthy"

    return health


@app.get("/")
async def root():
    return {
        "message": "Law Practice Audit Service API",
        "version": "1.0.0",
        "docs": "/docs",
    }
