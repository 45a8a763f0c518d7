"""
Component health checks for the /health endpoint.

Checks:
- Database connectivity
- Redis connectivity (Celery broker, OAuth state, rate limits)
- Query monitor summary
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import redis
from sqlalchemy import text

from floworx.core.config import settings
from floworx.core.database import AsyncSessionLocal
from floworx.core.monitoring import QueryMonitor

logger = logging.getLogger(__name__)


def _healthy(started: float) -> Dict[str, Any]:
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}


def _unhealthy(component: str, error: Exception) -> Dict[str, Any]:
    logger.error(f"{component} health check failed: {error}", extra={"component": component})
    return {"status": "unhealthy", "error": str(error)}


async def check_database() -> Dict[str, Any]:
    """Run SELECT 1 against the primary database."""
    started = time.perf_counter()
    try:
        async with AsyncSessionLocal() as session:
            await session.scalar(text("SELECT 1"))
    except Exception as e:
        return _unhealthy("database", e)
    return _healthy(started)


def _ping_redis() -> None:
    client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
    try:
        client.ping()
    finally:
        client.close()


async def check_redis() -> Dict[str, Any]:
    """Ping Redis without blocking the event loop."""
    started = time.perf_counter()
    try:
        await asyncio.to_thread(_ping_redis)
    except Exception as e:
        return _unhealthy("redis", e)
    return _healthy(started)


async def get_health_metrics(monitor: Optional[QueryMonitor] = None) -> Dict[str, Any]:
    """
    Collect all component checks into one report.

    Overall status:
    - healthy: all checks pass
    - degraded: Redis down (auth and onboarding still work, background hand-off delayed)
    - unhealthy: database down
    """
    database, redis_status = await asyncio.gather(check_database(), check_redis())

    if database["status"] != "healthy":
        status = "unhealthy"
    elif redis_status["status"] != "healthy":
        status = "degraded"
    else:
        status = "healthy"

    metrics = {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {"database": database, "redis": redis_status},
    }

    if monitor is not None:
        monitor.check_alerts()
        metrics["queries"] = monitor.summary()

    return metrics
