"""
In-process query performance monitoring.

Tracks per-statement timings and error counts, global response-time
aggregates, and raises alerts (with cooldowns) for slow or failing queries.

Metrics are best-effort diagnostics, not correctness-critical state. The
monitor is an ordinary object: the app builds one in main.py and tests build
their own, so nothing here is a module-level singleton.

Usage:
    monitor = QueryMonitor()
    instrument_engine(async_engine, monitor)
    asyncio.create_task(monitor_periodically(monitor, 30))
    ...
    monitor.get_dashboard_data()
"""

import asyncio
import hashlib
import logging
import re
import secrets
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event

logger = logging.getLogger(__name__)

MAX_EXECUTIONS_PER_QUERY = 100
RETENTION_SECONDS = 60 * 60
ALERT_RETENTION_SECONDS = 24 * 60 * 60
CRITICAL_COOLDOWN_SECONDS = 5 * 60
DEFAULT_COOLDOWN_SECONDS = 15 * 60

DEFAULT_THRESHOLDS = {
    "slow_query_ms": 1000,
    "critical_query_ms": 3000,
    "high_connection_count": 20,
    "error_rate": 0.05,
}


def query_id(statement: str) -> str:
    """
    Group statements that differ only in whitespace, bind markers or literals.

    Returns:
        8-char hex id
    """
    normalized = re.sub(r"\s+", " ", statement)
    normalized = re.sub(r"\$\d+", "$?", normalized)
    normalized = re.sub(r"\d+", "N", normalized)
    normalized = normalized.strip().lower()
    return hashlib.md5(normalized.encode()).hexdigest()[:8]


class QueryMonitor:
    """Collects query metrics and raises performance alerts."""

    def __init__(
        self,
        thresholds: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.thresholds = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        """Drop all collected metrics, alerts and cooldowns."""
        self.queries: Dict[str, Dict[str, Any]] = {}
        self.alerts: List[Dict[str, Any]] = []
        self._cooldowns: Dict[str, float] = {}
        self.performance = {
            "total_queries": 0,
            "slow_queries": 0,
            "failed_queries": 0,
            "average_response_ms": 0.0,
            "peak_response_ms": 0.0,
            "current_connections": 0,
        }

    def track_query(
        self,
        statement: str,
        duration_ms: float,
        success: bool = True,
        error: Optional[str] = None,
    ) -> str:
        """
        Record one statement execution.

        Returns:
            The statement's query id
        """
        qid = query_id(statement)
        now = self._clock()

        metrics = self.queries.get(qid)
        if metrics is None:
            metrics = {
                "query_text": statement[:200],
                "executions": [],
                "total_executions": 0,
                "total_duration_ms": 0.0,
                "average_duration_ms": 0.0,
                "max_duration_ms": 0.0,
                "min_duration_ms": None,
                "error_count": 0,
                "last_execution": now,
            }
            self.queries[qid] = metrics

        metrics["executions"].append(
            {"timestamp": now, "duration_ms": duration_ms, "success": success, "error": error}
        )
        # Keep only the most recent executions per statement
        del metrics["executions"][:-MAX_EXECUTIONS_PER_QUERY]

        metrics["total_executions"] += 1
        metrics["last_execution"] = now
        if success:
            metrics["total_duration_ms"] += duration_ms
            metrics["average_duration_ms"] = metrics["total_duration_ms"] / metrics["total_executions"]
            metrics["max_duration_ms"] = max(metrics["max_duration_ms"], duration_ms)
            if metrics["min_duration_ms"] is None or duration_ms < metrics["min_duration_ms"]:
                metrics["min_duration_ms"] = duration_ms
        else:
            metrics["error_count"] += 1

        perf = self.performance
        perf["total_queries"] += 1
        if duration_ms > self.thresholds["slow_query_ms"]:
            perf["slow_queries"] += 1
        if not success:
            perf["failed_queries"] += 1
        total = perf["total_queries"]
        perf["average_response_ms"] = (perf["average_response_ms"] * (total - 1) + duration_ms) / total
        perf["peak_response_ms"] = max(perf["peak_response_ms"], duration_ms)

        if duration_ms > self.thresholds["critical_query_ms"]:
            self._create_alert("critical_slow_query", "critical", {
                "message": f"Critical slow query detected: {duration_ms:.0f}ms",
                "query_id": qid,
                "duration_ms": duration_ms,
                "query_text": metrics["query_text"],
            })

        if not success and error:
            self._create_alert("query_error", "error", {
                "message": f"Query execution failed: {error}",
                "query_id": qid,
                "error": error,
                "query_text": metrics["query_text"],
            })

        return qid

    def set_connection_count(self, count: int) -> None:
        self.performance["current_connections"] = max(count, 0)

    def check_alerts(self) -> List[Dict[str, Any]]:
        """
        Evaluate global and per-statement alert rules.

        Returns:
            Alerts created by this call (cooldowns suppress repeats)
        """
        created = []
        perf = self.performance
        thresholds = self.thresholds

        error_rate = perf["failed_queries"] / perf["total_queries"] if perf["total_queries"] else 0.0
        if error_rate > thresholds["error_rate"]:
            created.append(self._create_alert("high_error_rate", "critical", {
                "message": f"High error rate detected: {error_rate * 100:.2f}%",
                "error_rate": error_rate,
                "total_queries": perf["total_queries"],
                "failed_queries": perf["failed_queries"],
            }))

        if perf["current_connections"] > thresholds["high_connection_count"]:
            created.append(self._create_alert("high_connection_count", "warning", {
                "message": f"High connection count: {perf['current_connections']}",
                "connection_count": perf["current_connections"],
            }))

        if perf["average_response_ms"] > thresholds["slow_query_ms"]:
            created.append(self._create_alert("slow_average_response", "warning", {
                "message": f"Slow average response time: {perf['average_response_ms']:.2f}ms",
                "average_response_ms": perf["average_response_ms"],
            }))

        for qid, metrics in self.queries.items():
            total = metrics["total_executions"]
            if total >= 10 and metrics["average_duration_ms"] > thresholds["slow_query_ms"]:
                created.append(self._create_alert("consistently_slow_query", "warning", {
                    "message": f"Query consistently slow: {metrics['average_duration_ms']:.2f}ms average",
                    "query_id": qid,
                    "average_duration_ms": metrics["average_duration_ms"],
                    "total_executions": total,
                }))

            query_error_rate = metrics["error_count"] / total if total else 0.0
            if total >= 5 and query_error_rate > 0.2:
                created.append(self._create_alert("high_query_error_rate", "error", {
                    "message": f"High error rate for query: {query_error_rate * 100:.2f}%",
                    "query_id": qid,
                    "error_rate": query_error_rate,
                    "error_count": metrics["error_count"],
                }))

        now = self._clock()
        self.alerts = [a for a in self.alerts if now - a["timestamp"] < ALERT_RETENTION_SECONDS]
        return [alert for alert in created if alert]

    def _create_alert(self, alert_type: str, severity: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        now = self._clock()
        cooldown_key = f"{alert_type}:{data.get('query_id', 'global')}"
        cooldown = CRITICAL_COOLDOWN_SECONDS if severity == "critical" else DEFAULT_COOLDOWN_SECONDS

        last = self._cooldowns.get(cooldown_key)
        if last is not None and now - last < cooldown:
            return None

        alert = {
            "id": secrets.token_hex(8),
            "type": alert_type,
            "severity": severity,
            "timestamp": now,
            **data,
        }
        self.alerts.append(alert)
        self._cooldowns[cooldown_key] = now

        logger.warning(
            f"Performance alert: {alert['message']}",
            extra={"alert_type": alert_type, "severity": severity, "query_id": data.get("query_id")},
        )
        return alert

    def cleanup(self) -> None:
        """Forget executions, idle statements and cooldowns older than an hour."""
        now = self._clock()
        for qid in list(self.queries):
            metrics = self.queries[qid]
            metrics["executions"] = [
                e for e in metrics["executions"] if now - e["timestamp"] < RETENTION_SECONDS
            ]
            if not metrics["executions"] and now - metrics["last_execution"] > RETENTION_SECONDS:
                del self.queries[qid]

        for key in [k for k, ts in self._cooldowns.items() if now - ts > RETENTION_SECONDS]:
            del self._cooldowns[key]

    def update_thresholds(self, **thresholds: float) -> Dict[str, float]:
        unknown = set(thresholds) - set(DEFAULT_THRESHOLDS)
        if unknown:
            raise ValueError(f"Unknown thresholds: {', '.join(sorted(unknown))}")
        self.thresholds.update(thresholds)
        logger.info("Monitoring thresholds updated", extra={"thresholds": dict(self.thresholds)})
        return self.thresholds

    def get_dashboard_data(self) -> Dict[str, Any]:
        """Slowest statements and alerts from the last hour."""
        now = self._clock()
        hour_ago = now - RETENTION_SECONDS

        top_slow = sorted(
            (
                {
                    "id": qid,
                    "query_text": m["query_text"],
                    "average_duration_ms": m["average_duration_ms"],
                    "total_executions": m["total_executions"],
                    "error_count": m["error_count"],
                    "recent_executions": sum(1 for e in m["executions"] if e["timestamp"] > hour_ago),
                }
                for qid, m in self.queries.items()
            ),
            key=lambda q: q["average_duration_ms"],
            reverse=True,
        )[:20]

        recent_alerts = sorted(
            (a for a in self.alerts if a["timestamp"] > hour_ago),
            key=lambda a: a["timestamp"],
            reverse=True,
        )[:10]

        return {
            "timestamp": now,
            "performance": dict(self.performance),
            "top_slow_queries": top_slow,
            "recent_alerts": recent_alerts,
            "recommendations": self.get_recommendations(),
        }

    def get_recommendations(self) -> List[Dict[str, Any]]:
        recommendations = []
        thresholds = self.thresholds

        for qid, m in self.queries.items():
            if m["total_executions"] >= 5 and m["average_duration_ms"] > thresholds["slow_query_ms"]:
                recommendations.append({
                    "type": "slow_query",
                    "priority": "high" if m["average_duration_ms"] > thresholds["critical_query_ms"] else "medium",
                    "query_id": qid,
                    "average_duration_ms": m["average_duration_ms"],
                    "suggestion": "Consider adding indexes, optimizing query structure, or caching results",
                })

        if self.performance["current_connections"] > thresholds["high_connection_count"] * 0.8:
            recommendations.append({
                "type": "high_connections",
                "priority": "medium",
                "current_connections": self.performance["current_connections"],
                "suggestion": "Review connection pool sizing",
            })

        total = self.performance["total_queries"]
        if total and self.performance["failed_queries"] / total > thresholds["error_rate"]:
            recommendations.append({
                "type": "high_error_rate",
                "priority": "high",
                "suggestion": "Investigate failing queries and add error handling",
            })

        return recommendations

    def summary(self) -> Dict[str, Any]:
        """Compact view for the health endpoint."""
        perf = self.performance
        return {
            "total_queries": perf["total_queries"],
            "failed_queries": perf["failed_queries"],
            "slow_queries": perf["slow_queries"],
            "average_response_ms": round(perf["average_response_ms"], 2),
            "current_connections": perf["current_connections"],
            "open_alerts": len(self.alerts),
        }


def instrument_engine(engine, monitor: QueryMonitor) -> None:
    """
    Feed statement timings and pool usage from a SQLAlchemy engine into a monitor.

    Accepts sync or async engines.
    """
    sync_engine = getattr(engine, "sync_engine", engine)

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        started = conn.info["query_start_time"].pop()
        monitor.track_query(statement, (time.perf_counter() - started) * 1000)

    @event.listens_for(sync_engine, "handle_error")
    def _handle_error(exception_context):
        conn = exception_context.connection
        started_stack = conn.info.get("query_start_time") if conn is not None else None
        if not started_stack:
            return
        started = started_stack.pop()
        monitor.track_query(
            exception_context.statement or "",
            (time.perf_counter() - started) * 1000,
            success=False,
            error=type(exception_context.original_exception).__name__,
        )

    @event.listens_for(sync_engine.pool, "checkout")
    def _checkout(dbapi_connection, connection_record, connection_proxy):
        monitor.set_connection_count(monitor.performance["current_connections"] + 1)

    @event.listens_for(sync_engine.pool, "checkin")
    def _checkin(dbapi_connection, connection_record):
        monitor.set_connection_count(monitor.performance["current_connections"] - 1)


def run_maintenance(monitor: QueryMonitor) -> List[Dict[str, Any]]:
    """One monitoring tick: evaluate alert rules, then forget stale data."""
    alerts = monitor.check_alerts()
    monitor.cleanup()
    return alerts


async def monitor_periodically(monitor: QueryMonitor, interval: float) -> None:
    """
    Run maintenance every `interval` seconds until cancelled.

    A failing tick is logged and the loop keeps going.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            run_maintenance(monitor)
        except Exception:
            logger.exception("Query monitor maintenance failed")
