"""DrugWatch - FastAPI Application.

Drug shop inspection portal: inspections, impoundment custody and release,
and SMS notification of facility contacts.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from drugwatch import __version__
from drugwatch.core.config import settings
from drugwatch.core.exceptions import DrugWatchError, ReleaseValidationError
from drugwatch.core.logging import configure_logging
from drugwatch.dependencies import get_store
from drugwatch.jobs.scheduler import shutdown_scheduler, start_scheduler
from drugwatch.routers import auth, inspections, notifications, registers, reminders, sms
from drugwatch.services.inspections import migrate_legacy_timestamps

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{__version__} (store={settings.STORE_BACKEND})")
    if settings.MIGRATE_TIMESTAMPS_ON_STARTUP:
        try:
            await migrate_legacy_timestamps(get_store())
        except DrugWatchError as e:
            logger.error(f"[MIGRATE] createdAt migration failed: {e.message}")
    if settings.ENABLE_SCHEDULER:
        start_scheduler()
    yield
    shutdown_scheduler()
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    description="DrugWatch - Drug shop inspections, impoundment and release",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ Error handlers ============

@app.exception_handler(DrugWatchError)
async def drugwatch_error_handler(request: Request, exc: DrugWatchError):
    content = {"ok": False, "error": exc.message}
    if isinstance(exc, ReleaseValidationError):
        content["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "Something went wrong. Please reload and try again."},
    )


# Include routers
app.include_router(auth.router)
app.include_router(sms.router)  # SMS relay
app.include_router(inspections.router)
app.include_router(registers.router)  # Impounded / released / dashboard
app.include_router(notifications.router)  # Outbox
app.include_router(reminders.router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": settings.APP_NAME,
        "version": __version__,
        "status": "operational",
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "store": settings.STORE_BACKEND,
        "sms_configured": bool(settings.YOOLA_SMS_API_KEY),
        "scheduler": settings.ENABLE_SCHEDULER,
    }
