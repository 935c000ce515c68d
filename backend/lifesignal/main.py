"""
FastAPI Main Application Entry Point for Life Signal.

The escalation monitor backend:
- Periodic scan for missed check-ins
- Push rounds and alert calls to users and their emergency contacts
- Telnyx webhook handling (alert script, DTMF acknowledgement)
- Contact profile sync and dashboard status views
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lifesignal.core.config import settings
from lifesignal.core.container import build_services
from lifesignal.core.exceptions import LifeSignalException
from lifesignal.api.routes import (
    escalation_router,
    webhook_router,
    user_router,
    contact_router,
)


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Build the service graph (store, push, telephony)
    - Start background scheduler

    Shutdown:
    - Stop scheduler gracefully
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Telephony enabled: {settings.telephony_enabled}")
    logger.info(f"Push enabled: {settings.push_enabled}")
    logger.info(f"Scheduler enabled: {settings.enable_scheduler}")
    logger.info(f"Run scheduler (this instance): {settings.run_scheduler}")

    app.state.services = build_services(settings)
    app.state.scheduler = None

    # Only one worker may run the scan timer; set RUN_SCHEDULER=true on exactly one
    should_run_scheduler = settings.enable_scheduler and settings.run_scheduler

    if should_run_scheduler:
        try:
            from lifesignal.services.scheduler import LifeSignalScheduler
            app.state.scheduler = LifeSignalScheduler(app.state.services.scanner, settings)
            app.state.scheduler.start()
            logger.info("Background scheduler started")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")

    yield

    # Shutdown
    if app.state.scheduler and app.state.scheduler.is_running:
        app.state.scheduler.stop()
        logger.info("Scheduler stopped")

    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # Life Signal - Escalation Monitor

    Watches periodic safety check-ins and escalates missed ones.

    ## Escalation
    - **Main user**: push rounds, then an alert call (per the user's mode)
    - **Emergency contacts**: after the escalation delay, pushes to every
      active contact and a call to the primary contact
    - **Acknowledgement**: pressing 1 on an alert call stamps the user record

    ## Scan Response Structure
    ```json
    {
      "ok": true,
      "processed": ["user-id"],
      "telnyxCallsQueued": 1,
      "escalationsQueued": 1,
      "dueEscProcessed": 0
    }
    ```
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Configure CORS for the dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler for LifeSignalExceptions
@app.exception_handler(LifeSignalException)
async def life_signal_exception_handler(request, exc: LifeSignalException):
    """Handle all LifeSignalException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Include API routers
app.include_router(escalation_router)
app.include_router(webhook_router)
app.include_router(user_router)
app.include_router(contact_router)


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns service status, scheduler health, and configuration.
    """
    scheduler = getattr(app.state, 'scheduler', None)

    if scheduler:
        scheduler_status = scheduler.get_health_status()
    else:
        scheduler_status = {"status": "healthy", "is_running": False, "jobs": [], "failures": {}}

    return {
        "status": scheduler_status["status"],
        "service": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "telephony_enabled": settings.telephony_enabled,
        "push_enabled": settings.push_enabled,
        "scheduler": scheduler_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Root endpoint
@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Docs disabled in production",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lifesignal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
