"""
Unit tests for QueryMonitor.

Tests query performance bookkeeping:
- Per-statement metrics and query id grouping
- Global aggregates (average, peak, slow/failed counts)
- Immediate alerts (critical slow query, query error)
- Rule-based alerts from check_alerts()
- Alert cooldowns, cleanup and threshold updates
- The periodic maintenance loop

Run tests:
    pytest tests/unit/test_query_monitor.py -v
"""

import asyncio
from unittest.mock import patch

import pytest

from floworx.core.config import settings
from floworx.core.monitoring import (
    CRITICAL_COOLDOWN_SECONDS,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_THRESHOLDS,
    MAX_EXECUTIONS_PER_QUERY,
    QueryMonitor,
    monitor_periodically,
    query_id,
    run_maintenance,
)


class FakeClock:
    """Controllable time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock):
    return QueryMonitor(clock=clock)


class TestQueryId:
    """Test statement grouping."""

    def test_literals_and_whitespace_share_an_id(self):
        """Statements differing only in literals/whitespace map to one id."""
        a = query_id("SELECT * FROM users WHERE id = 1")
        b = query_id("select *  from users\n where id = 42")
        assert a == b
        assert len(a) == 8

    def test_different_statements_differ(self):
        """Different tables produce different ids."""
        assert query_id("SELECT * FROM users") != query_id("SELECT * FROM mailboxes")


class TestTrackQuery:
    """Test per-statement and global metrics."""

    def test_tracks_metrics(self, monitor):
        """Durations feed per-query and global aggregates."""
        # Execute
        qid = monitor.track_query("SELECT 1", 100)
        monitor.track_query("SELECT 1", 300)

        # Verify
        metrics = monitor.queries[qid]
        assert metrics["total_executions"] == 2
        assert metrics["average_duration_ms"] == 200
        assert metrics["max_duration_ms"] == 300
        assert metrics["min_duration_ms"] == 100
        assert monitor.performance["total_queries"] == 2
        assert monitor.performance["average_response_ms"] == 200
        assert monitor.performance["peak_response_ms"] == 300

    def test_keeps_only_recent_executions(self, monitor):
        """Execution history per statement is capped."""
        for _ in range(MAX_EXECUTIONS_PER_QUERY + 25):
            qid = monitor.track_query("SELECT 1", 5)

        assert len(monitor.queries[qid]["executions"]) == MAX_EXECUTIONS_PER_QUERY
        assert monitor.queries[qid]["total_executions"] == MAX_EXECUTIONS_PER_QUERY + 25

    def test_slow_query_counted(self, monitor):
        """Queries over slow_query_ms count as slow."""
        monitor.track_query("SELECT 1", 1500)
        assert monitor.performance["slow_queries"] == 1
        assert monitor.alerts == []

    def test_critical_slow_query_alerts_immediately(self, monitor):
        """Queries over critical_query_ms raise a critical alert."""
        monitor.track_query("SELECT pg_sleep(5)", 5000)

        assert len(monitor.alerts) == 1
        alert = monitor.alerts[0]
        assert alert["type"] == "critical_slow_query"
        assert alert["severity"] == "critical"
        assert alert["duration_ms"] == 5000

    def test_failed_query_alerts_immediately(self, monitor):
        """A failed query raises a query_error alert."""
        qid = monitor.track_query("SELECT * FROM missing", 10, success=False, error="OperationalError")

        assert monitor.performance["failed_queries"] == 1
        assert monitor.queries[qid]["error_count"] == 1
        assert monitor.alerts[0]["type"] == "query_error"
        assert monitor.alerts[0]["error"] == "OperationalError"


class TestCheckAlerts:
    """Test rule-based alerts."""

    def test_no_alerts_when_healthy(self, monitor):
        """Fast, successful traffic raises nothing."""
        for _ in range(20):
            monitor.track_query("SELECT 1", 10)
        assert monitor.check_alerts() == []

    def test_high_error_rate(self, monitor):
        """Global error rate above threshold raises a critical alert."""
        for _ in range(9):
            monitor.track_query("SELECT 1", 10)
        monitor.track_query("SELECT 2", 10, success=False)

        created = monitor.check_alerts()

        assert [a["type"] for a in created] == ["high_error_rate"]
        assert created[0]["severity"] == "critical"

    def test_high_connection_count(self, monitor):
        """Connection count above threshold raises a warning."""
        monitor.set_connection_count(25)
        created = monitor.check_alerts()
        assert [a["type"] for a in created] == ["high_connection_count"]

    def test_consistently_slow_query(self, monitor):
        """Ten or more slow executions of one statement raise an alert."""
        for _ in range(10):
            monitor.track_query("SELECT * FROM business_categories", 1200)

        types = {a["type"] for a in monitor.check_alerts()}

        assert "consistently_slow_query" in types
        assert "slow_average_response" in types

    def test_high_query_error_rate(self, monitor):
        """A statement failing more than 20% of at least 5 runs raises an alert."""
        for _ in range(3):
            monitor.track_query("SELECT 1", 10)
        for _ in range(2):
            monitor.track_query("SELECT 1", 10, success=False)

        types = {a["type"] for a in monitor.check_alerts()}
        assert "high_query_error_rate" in types

    def test_cooldown_suppresses_repeats(self, monitor, clock):
        """Same alert is not repeated inside its cooldown window."""
        monitor.set_connection_count(25)
        assert len(monitor.check_alerts()) == 1

        clock.advance(DEFAULT_COOLDOWN_SECONDS - 1)
        assert monitor.check_alerts() == []

        clock.advance(2)
        assert len(monitor.check_alerts()) == 1

    def test_critical_cooldown_is_shorter(self, monitor, clock):
        """Critical alerts re-fire after the shorter critical cooldown."""
        monitor.track_query("SELECT 1", 5000)
        clock.advance(CRITICAL_COOLDOWN_SECONDS + 1)
        monitor.track_query("SELECT 1", 5000)

        assert len([a for a in monitor.alerts if a["type"] == "critical_slow_query"]) == 2


class TestMaintenance:
    """Test cleanup, thresholds and reporting."""

    def test_cleanup_drops_idle_statements(self, monitor, clock):
        """Statements idle for over an hour are forgotten."""
        monitor.track_query("SELECT 1", 10)
        clock.advance(2 * 60 * 60)

        monitor.cleanup()

        assert monitor.queries == {}

    def test_update_thresholds(self, monitor):
        """Known thresholds can be changed; unknown names are rejected."""
        monitor.update_thresholds(slow_query_ms=50)
        monitor.track_query("SELECT 1", 60)
        assert monitor.performance["slow_queries"] == 1

        with pytest.raises(ValueError, match="Unknown thresholds"):
            monitor.update_thresholds(bogus=1)

    def test_reset(self, monitor):
        """reset() clears everything."""
        monitor.track_query("SELECT 1", 5000)
        monitor.reset()

        assert monitor.queries == {}
        assert monitor.alerts == []
        assert monitor.performance["total_queries"] == 0

    def test_dashboard_and_recommendations(self, monitor):
        """Dashboard lists slowest statements first with recommendations."""
        for _ in range(5):
            monitor.track_query("SELECT * FROM team_members", 1500)
        monitor.track_query("SELECT 1", 5)

        dashboard = monitor.get_dashboard_data()

        assert dashboard["top_slow_queries"][0]["average_duration_ms"] == 1500
        assert dashboard["recommendations"][0]["type"] == "slow_query"
        assert len(dashboard["top_slow_queries"]) == 2
        assert monitor.summary()["total_queries"] == 6


class TestPeriodicMaintenance:
    """Test the background tick that runs alert rules and cleanup."""

    def test_run_maintenance_alerts_then_cleans_up(self, monitor, clock):
        """A tick raises rule-based alerts and forgets idle statements."""
        # Setup
        monitor.set_connection_count(25)
        monitor.track_query("SELECT 1", 10)
        clock.advance(2 * 60 * 60)

        # Execute
        alerts = run_maintenance(monitor)

        # Verify
        assert [a["type"] for a in alerts] == ["high_connection_count"]
        assert monitor.queries == {}

    def test_settings_thresholds_are_accepted(self, monitor):
        """Every configured threshold is one the monitor knows."""
        assert set(settings.monitoring_thresholds) == set(DEFAULT_THRESHOLDS)

        monitor.update_thresholds(**settings.monitoring_thresholds)

        assert monitor.thresholds["slow_query_ms"] == settings.MONITORING_SLOW_QUERY_MS

    @pytest.mark.asyncio
    async def test_loop_keeps_running_after_failed_tick(self, monitor):
        """A failing tick is logged; the next tick still runs."""
        calls = []

        def _tick(m):
            calls.append(m)
            if len(calls) == 1:
                raise RuntimeError("boom")
            raise asyncio.CancelledError()

        with patch("floworx.core.monitoring.run_maintenance", side_effect=_tick):
            with pytest.raises(asyncio.CancelledError):
                await monitor_periodically(monitor, 0)

        assert calls == [monitor, monitor]

    @pytest.mark.asyncio
    async def test_loop_stops_when_cancelled(self, monitor):
        task = asyncio.create_task(monitor_periodically(monitor, 3600))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert task.cancelled()
