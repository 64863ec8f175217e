"""
Analytics Service - aggregated report counts for dashboards.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging

from app.core.errors import ValidationError
from app.models.report import AnalyticsRow, ReportCategory, ReportStatus
from app.stores import ReportStore, get_report_store
from app.utils.firestore_helpers import get_path
from app.utils.time_utils import parse_timestamp

logger = logging.getLogger(__name__)


def _average(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


class AnalyticsService:
    """Service for generating report analytics."""

    def __init__(self, store: Optional[ReportStore] = None):
        self.store = store or get_report_store()

    def get_analytics(self, start: datetime, end: datetime) -> List[AnalyticsRow]:
        """
        Group reports created in [start, end] (inclusive) by category and status.

        Returns:
            Rows with count, average resolution time (hours, resolved reports
            only) and average AI priority score
        """
        start, end = parse_timestamp(start), parse_timestamp(end)
        if start is None or end is None:
            raise ValidationError("start and end dates are required")
        if start > end:
            raise ValidationError("start must not be after end")

        groups: Dict[Tuple[str, str], Dict[str, list]] = defaultdict(lambda: {"resolution": [], "priority": [], "count": 0})
        docs = self.store.stream_reports(filters=[("created_at", ">=", start), ("created_at", "<=", end)])
        for data in docs:
            bucket = groups[(data["category"], data["status"])]
            bucket["count"] += 1
            resolution = get_path(data, "sla.actual_resolution_time")
            if resolution is not None:
                bucket["resolution"].append(resolution)
            priority = data.get("ai_priority_score")
            if priority is not None:
                bucket["priority"].append(priority)

        rows = [
            AnalyticsRow(
                category=ReportCategory(category),
                status=ReportStatus(status),
                count=bucket["count"],
                avg_resolution_time=_average(bucket["resolution"]),
                avg_priority=_average(bucket["priority"]),
            )
            for (category, status), bucket in sorted(groups.items())
        ]
        logger.info(f"Analytics {start.isoformat()}..{end.isoformat()}: {len(rows)} groups")
        return rows


# Global service instance
_analytics_service = None


def get_analytics_service() -> AnalyticsService:
    """Get or create AnalyticsService singleton."""
    global _analytics_service
    if _analytics_service is None:
        _analytics_service = AnalyticsService()
    return _analytics_service
