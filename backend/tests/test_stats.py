"""
Tests for dashboard statistics.
"""
from datetime import timedelta

import pytest

from imago.models.db_models import OccurrenceStatus
from imago.services.occurrences import DashboardStatsService, OccurrenceStore
from imago.services.occurrences.state_machine import SUBMIT_FOR_ANALYSIS

from conftest import VALID_INTAKE, FIXED_NOW


@pytest.fixture
def seeded(db):
    """Occurrences created 1, 1, 10 and 40 days before FIXED_NOW."""
    created = []
    for days_ago in (1, 1, 10, 40):
        when = FIXED_NOW - timedelta(days=days_ago)
        created.append(OccurrenceStore(db, clock=lambda when=when: when).create(VALID_INTAKE))
    OccurrenceStore(db).transition(created[0], SUBMIT_FOR_ANALYSIS, values={"admin_note": "note"})
    return created


@pytest.fixture
def stats_service(db):
    return DashboardStatsService(db, clock=lambda: FIXED_NOW)


class TestDashboardStats:

    def test_default_period(self, stats_service, seeded):
        stats = stats_service.dashboard_stats()

        assert stats["period"] == "30d"
        assert stats["total"] == 3
        assert stats["open"] == 2
        assert stats["in_analysis"] == 1
        assert stats["awaiting_confirmation"] == 0
        assert stats["finalized"] == 0

    @pytest.mark.parametrize("period,total", [("7d", 2), ("30d", 3), ("90d", 4)])
    def test_periods(self, stats_service, seeded, period, total):
        assert stats_service.dashboard_stats(period)["total"] == total

    def test_unknown_period_falls_back(self, stats_service, seeded):
        assert stats_service.dashboard_stats("1y")["period"] == "30d"

    def test_breakdowns(self, stats_service, seeded):
        stats = stats_service.dashboard_stats("90d")

        assert stats["by_category"] == [{"name": "Administrative", "value": 4}]
        assert [s["name"] for s in stats["by_status"]] == [s.value for s in OccurrenceStatus]
        assert stats["by_date"] == [
            {"date": "2024-12-06", "count": 1},
            {"date": "2025-01-05", "count": 1},
            {"date": "2025-01-14", "count": 2},
        ]

    def test_empty_database(self, stats_service):
        stats = stats_service.dashboard_stats("7d")
        assert stats["total"] == 0
        assert stats["by_category"] == []
        assert all(s["value"] == 0 for s in stats["by_status"])
