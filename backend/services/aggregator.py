"""
Aggregator Class - Filters records and computes dashboard statistics

This module turns a snapshot of log records into the numbers the dashboard
shows: filtered listings, headline metrics and chart distributions.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.data_models import LogFilter, LogRecord, Metrics
from services.parser import LogParser
from services.storage import LogStore

SORT_FIELDS = ("timestamp", "id", "ip", "method", "path", "status", "level")
TIME_BUCKETS = ("hour", "day", "week")
CHART_LEVELS = ("info", "warn", "error", "debug")


def _text_key(value: Optional[str]) -> str:
    return (value or "").lower()


SORT_KEYS: Dict[str, Callable[[LogRecord], Any]] = {
    "timestamp": lambda r: r.timestamp,
    "id": lambda r: r.id,
    "ip": lambda r: _text_key(r.ip_address),
    "method": lambda r: _text_key(r.method),
    "path": lambda r: _text_key(r.path),
    "status": lambda r: r.status if r.status is not None else -1,
    "level": lambda r: r.level,
}


class Aggregator:
    """
    Aggregates log records into metrics and statistics.
    Responsibilities:
    - Load the record snapshot from the store
    - Filter records by window, date range and dashboard criteria
    - Sort and paginate listings
    - Compute headline metrics and chart distributions
    """

    def __init__(self, log_store: LogStore):
        self.store = log_store

    def load_snapshot(self) -> List[LogRecord]:
        """Load all records currently in the store"""
        return self.store.load_records()

    def filter_by_window(self, records: List[LogRecord], minutes: int) -> List[LogRecord]:
        """
        Filter records within time window.
        Window is anchored to latest timestamp in log (not system clock).
        """
        if not records:
            return []

        latest = max(r.timestamp for r in records)
        start = latest - timedelta(minutes=minutes)

        return [r for r in records if start <= r.timestamp <= latest]

    @staticmethod
    def filter_by_range(
        records: List[LogRecord],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LogRecord]:
        """Records with start <= timestamp <= end; open bounds match all"""
        return [
            r for r in records
            if (start is None or r.timestamp >= start) and (end is None or r.timestamp <= end)
        ]

    @classmethod
    def apply_filters(cls, records: List[LogRecord], criteria: LogFilter) -> List[LogRecord]:
        """Apply every non-empty criterion (AND semantics)"""
        out = cls.filter_by_range(records, criteria.start, criteria.end)

        if criteria.level:
            out = [r for r in out if r.level == criteria.level]
        if criteria.method:
            out = [r for r in out if r.method == criteria.method]
        if criteria.status:
            out = [r for r in out if r.status is not None and criteria.status in str(r.status)]
        if criteria.path:
            needle = criteria.path.lower()
            out = [r for r in out if r.path and needle in r.path.lower()]
        if criteria.user_id:
            needle = criteria.user_id.lower()
            out = [r for r in out if r.user_id and needle in r.user_id.lower()]
        if criteria.ip:
            out = [r for r in out if r.ip_address and criteria.ip in r.ip_address]
        if criteria.search:
            needle = criteria.search.lower()
            out = [
                r for r in out
                if any(needle in (text or "").lower() for text in (r.message, r.user_id, r.details))
            ]

        return out

    @staticmethod
    def sort_records(records: List[LogRecord], sort_by: str = "timestamp", order: str = "desc") -> List[LogRecord]:
        """Sort a copy of records by one of SORT_FIELDS"""
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Unsupported sort field: {sort_by}")
        reverse = order.lower() != "asc"
        return sorted(records, key=SORT_KEYS[sort_by], reverse=reverse)

    @staticmethod
    def paginate(records: List[LogRecord], page: int = 1, page_size: int = 20) -> Tuple[List[LogRecord], int]:
        """One page of records plus the total number of pages"""
        total_pages = max(1, -(-len(records) // page_size))
        start = (page - 1) * page_size
        return records[start:start + page_size], total_pages

    @staticmethod
    def summarize_logs(records: List[LogRecord]) -> Dict[str, Any]:
        """Totals grouped by activity and by status"""
        activities: Dict[str, int] = {}
        statuses: Dict[str, int] = {}

        for r in records:
            activity = r.activity or "unknown"
            activities[activity] = activities.get(activity, 0) + 1

            status = str(r.status) if r.status is not None else "unknown"
            statuses[status] = statuses.get(status, 0) + 1

        return {
            "total_logs": len(records),
            "activities": activities,
            "statuses": statuses,
        }

    @staticmethod
    def compute_metrics(records: List[LogRecord], security_issues: int = 0) -> Metrics:
        """Compute headline metrics from log records"""
        error_count = sum(1 for r in records if r.status is not None and r.status >= 400)

        durations = [r.response_time_ms for r in records if r.response_time_ms]
        avg_response = round(sum(durations) / len(durations)) if durations else None

        return Metrics(
            total_requests=len(records),
            error_count=error_count,
            avg_response_time=avg_response,
            security_issues=security_issues,
        )

    @staticmethod
    def time_bucket(ts: datetime, bucket: str = "hour") -> datetime:
        """Start of the hour, day or week (Monday) containing ts"""
        if bucket == "hour":
            return ts.replace(minute=0, second=0, microsecond=0)
        day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
        if bucket == "day":
            return day
        if bucket == "week":
            return day - timedelta(days=day.weekday())
        raise ValueError(f"Unsupported time bucket: {bucket}")

    @classmethod
    def compute_timeline(cls, records: List[LogRecord], bucket: str = "hour") -> Dict[str, int]:
        """Record counts per time bucket, in chronological order"""
        counts: Dict[datetime, int] = {}
        for r in records:
            key = cls.time_bucket(r.timestamp, bucket)
            counts[key] = counts.get(key, 0) + 1

        return {k.isoformat(): counts[k] for k in sorted(counts)}

    @staticmethod
    def count_by(records: List[LogRecord], key_fn: Callable[[LogRecord], Any]) -> Dict[str, int]:
        """Counts per non-empty key, most frequent first"""
        counts: Dict[str, int] = {}
        for r in records:
            key = key_fn(r)
            if key is None or key == "":
                continue
            key = str(key)
            counts[key] = counts.get(key, 0) + 1

        return dict(sorted(counts.items(), key=lambda kv: kv[1], reverse=True))

    @classmethod
    def compute_distributions(cls, records: List[LogRecord], bucket: str = "hour") -> Dict[str, Any]:
        """All chart series for the dashboard"""
        levels = {level: 0 for level in CHART_LEVELS}
        for r in records:
            if r.level in levels:
                levels[r.level] += 1

        return {
            "timeline": cls.compute_timeline(records, bucket),
            "levels": levels,
            "methods": cls.count_by(records, lambda r: r.method),
            "statuses": cls.count_by(records, lambda r: r.status),
        }

    @staticmethod
    def compute_errors(records: List[LogRecord], limit: int = 20) -> List[LogRecord]:
        """Get recent error records"""
        errors = [r for r in records if LogParser.is_error(r)]
        errors.sort(key=lambda r: r.timestamp, reverse=True)
        return errors[:limit]

    @staticmethod
    def get_latest_timestamp(records: List[LogRecord]) -> Optional[datetime]:
        """Get latest timestamp from records"""
        return max((r.timestamp for r in records), default=None)
