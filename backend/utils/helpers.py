"""
Helper Functions

This module contains utility functions used throughout the application.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from dateutil import parser as dtparser


EXTENDED_JSON_KEYS = ("$oid", "$date", "$numberLong", "$numberInt", "$numberDouble")


def unwrap_extended(x: Any) -> Any:
    """Plain value out of Mongo extended JSON wrappers like {"$date": ...}"""
    while isinstance(x, dict) and len(x) == 1:
        key = next(iter(x))
        if key not in EXTENDED_JSON_KEYS:
            break
        x = x[key]
        if key in ("$numberLong", "$numberInt"):
            return safe_int(x)
        if key == "$numberDouble":
            return safe_float(x)
    return x


def parse_ts(x: Any) -> Optional[datetime]:
    """Parse timestamp from various formats; numbers are epoch milliseconds"""
    if x is None or x == "" or isinstance(x, bool):
        return None
    if isinstance(x, datetime):
        dt = x
    elif isinstance(x, (int, float)):
        try:
            dt = datetime.fromtimestamp(x / 1000, timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    else:
        try:
            dt = dtparser.isoparse(str(x))
        except (ValueError, OverflowError):
            try:
                dt = dtparser.parse(str(x))
            except (ValueError, OverflowError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def safe_int(x: Any) -> Optional[int]:
    """Safely convert to int; integral numeric strings such as "401.0" count"""
    if x is None or isinstance(x, bool):
        return None
    try:
        return int(x)
    except (TypeError, ValueError, OverflowError):
        pass
    f = safe_float(x)
    return int(f) if f is not None and f.is_integer() else None


def safe_float(x: Any) -> Optional[float]:
    """Safely convert to float"""
    try:
        return float(x) if x is not None else None
    except (TypeError, ValueError):
        return None


def safe_str(x: Any) -> Optional[str]:
    """String value or None for missing/empty input"""
    if x is None:
        return None
    s = str(x)
    return s if s else None


def get_nested(d: Dict[str, Any], path: Tuple[str, ...]) -> Any:
    """Safely read nested dict keys"""
    cur: Any = d
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            return None
        cur = cur[k]
    return cur


def first_present(d: Dict[str, Any], *paths: Tuple[str, ...]) -> Any:
    """First value that is not None among several (possibly nested) keys"""
    for path in paths:
        value = get_nested(d, path)
        if value is not None:
            return value
    return None


def minutes_between(start: datetime, end: datetime) -> float:
    """Elapsed minutes from start to end"""
    return (end - start).total_seconds() / 60.0


def round_half_up(x: float) -> int:
    """Round to nearest int, halves away from zero for positive values"""
    return int(x + 0.5) if x >= 0 else -int(-x + 0.5)


def percent(part: int, whole: int) -> float:
    """Percentage rounded to one decimal place, 0.0 for an empty whole"""
    if not whole:
        return 0.0
    return round(part / whole * 100.0, 1)
