"""
Dashboard Statistics

Simple aggregation over occurrences created within a trailing period.
"""
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import OccurrenceDB, OccurrenceStatus
from .errors import StorageError

PERIOD_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
}
DEFAULT_PERIOD = "30d"


class DashboardStatsService:
    """Counters by status, category and creation day."""

    def __init__(self, db_session: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db_session
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def dashboard_stats(self, period: Optional[str] = None) -> Dict[str, Any]:
        if period not in PERIOD_DAYS:
            period = DEFAULT_PERIOD
        start = self.clock() - timedelta(days=PERIOD_DAYS[period])

        try:
            occurrences = self.db.query(OccurrenceDB).filter(
                OccurrenceDB.created_at >= start
            ).order_by(OccurrenceDB.created_at.desc()).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Could not load dashboard statistics") from e

        by_status = Counter(o.status for o in occurrences)
        by_category = Counter(o.category.value for o in occurrences)
        by_date = Counter(o.created_at.date().isoformat() for o in occurrences)

        return {
            "period": period,
            "total": len(occurrences),
            "open": by_status[OccurrenceStatus.OPEN],
            "in_analysis": by_status[OccurrenceStatus.IN_ANALYSIS],
            "awaiting_confirmation": by_status[OccurrenceStatus.AWAITING_CONFIRMATION],
            "finalized": by_status[OccurrenceStatus.FINALIZED],
            "by_category": [
                {"name": name, "value": value} for name, value in by_category.items()
            ],
            "by_status": [
                {"name": status.value, "value": by_status[status]} for status in OccurrenceStatus
            ],
            "by_date": [
                {"date": day, "count": by_date[day]} for day in sorted(by_date)
            ],
        }
