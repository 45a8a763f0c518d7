"""
FloWorx - Main FastAPI Application

Entry point for the API. Mounts the auth, onboarding and mailbox routers and
runs query monitoring maintenance in the background.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from floworx.core.config import settings
from floworx.core.database import async_engine, close_db, init_db
from floworx.core.errors import register_error_handlers
from floworx.core.middleware import add_security_headers, configure_rate_limiting
from floworx.core.monitoring import QueryMonitor, instrument_engine, monitor_periodically
from floworx.models import User
from floworx.modules.auth.dependencies import get_current_user
from floworx.modules.auth.routes import password_reset_router, router as auth_router
from floworx.modules.mailbox.routes import router as mailbox_router
from floworx.modules.onboarding.routes import router as onboarding_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.

    Runs on startup and shutdown.
    """
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")

    from floworx.core.sentry import init_sentry
    init_sentry()

    # Development only - use Alembic in production
    if settings.ENVIRONMENT == "development":
        await init_db()

    monitor = app.state.query_monitor
    monitor.update_thresholds(**settings.monitoring_thresholds)
    app.state.monitor_task = asyncio.create_task(
        monitor_periodically(monitor, settings.MONITORING_INTERVAL_SECONDS)
    )

    yield

    logger.info("Shutting down...")
    app.state.monitor_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.monitor_task
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="Mailbox onboarding API: accounts, business categories, label mapping and provisioning",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,  # Disable docs in production
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# The frontend is a separate SPA and sends the session JWT as a Bearer header
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
limiter = configure_rate_limiting(app)
add_security_headers(app)

query_monitor = QueryMonitor()
instrument_engine(async_engine, query_monitor)
app.state.query_monitor = query_monitor

app.include_router(auth_router)
app.include_router(password_reset_router)
app.include_router(onboarding_router)
app.include_router(mailbox_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Status values:
    - healthy: All systems operational
    - degraded: Redis down (background hand-off delayed)
    - unhealthy: Database down
    """
    from floworx.core.health import get_health_metrics

    metrics = await get_health_metrics(app.state.query_monitor)

    return {
        "service": settings.APP_NAME,
        "version": "0.1.0",
        "environment": settings.ENVIRONMENT,
        **metrics,
    }


@app.get("/api/monitoring/dashboard")
async def monitoring_dashboard(user: User = Depends(get_current_user)):
    """Slowest statements, recent alerts and tuning recommendations."""
    return app.state.query_monitor.get_dashboard_data()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "floworx.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
