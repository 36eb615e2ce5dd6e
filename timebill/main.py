"""
Timebill Recurring Jobs - Main Application Entry Point

FastAPI application exposing recurring job commands to the host app,
with the periodic refresh scheduler running in the background.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from .database import init_database, close_database, get_database
from .exceptions import (
    CollaboratorError,
    NotFoundError,
    PersistenceError,
    StateConflictError,
    ValidationError,
)
from .scheduler.jobs import get_scheduler_manager

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info("Starting Timebill Recurring Jobs...")

    try:
        if await init_database():
            logger.info("Database initialized")
        else:
            logger.warning("Database not configured or failed to initialize")
    except Exception as e:
        logger.warning(f"Database init failed: {e}")

    try:
        scheduler = get_scheduler_manager()
        scheduler.start()
    except Exception as e:
        logger.warning(f"Scheduler failed: {e}")

    logger.info("Timebill Recurring Jobs started successfully!")

    yield

    logger.info("Shutting down Timebill Recurring Jobs...")

    try:
        scheduler = get_scheduler_manager()
        scheduler.stop()
    except Exception as e:
        logger.warning(f"Failed to stop scheduler during shutdown: {e}")

    try:
        await close_database()
    except Exception as e:
        logger.warning(f"Failed to close database during shutdown: {e}")

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Timebill Recurring Jobs",
    description="Recurring job scheduling, occurrence tracking and auto-invoicing",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from .web.routes import router as api_router
app.include_router(api_router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Detailed health check endpoint."""
    db_health = {"status": "not_configured"}
    try:
        db = get_database()
        db_health = await db.health_check()
    except Exception as e:
        db_health = {"status": "error", "error": str(e)}

    return {
        "status": "healthy" if db_health.get("status") == "healthy" else "degraded",
        "timestamp": datetime.now().isoformat(),
        "services": {
            "database": db_health.get("status", "unknown"),
            "billing_api": settings.billing_api_url,
            "scheduler": get_scheduler_manager().get_job_status(),
        }
    }


# Error handlers
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"error": "validation_error", "detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": "not_found", "detail": str(exc)})


@app.exception_handler(StateConflictError)
async def state_conflict_handler(request: Request, exc: StateConflictError):
    return JSONResponse(
        status_code=409,
        content={
            "error": "state_conflict",
            "detail": str(exc),
            "occurrence_id": exc.occurrence_id,
            "status": exc.current_status,
        },
    )


@app.exception_handler(CollaboratorError)
async def collaborator_error_handler(request: Request, exc: CollaboratorError):
    logger.warning(f"Collaborator error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={
            "error": type(exc).__name__,
            "detail": str(exc),
            "occurrence_id": exc.occurrence_id,
        },
    )


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"error": "persistence_error", "detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "timebill.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
