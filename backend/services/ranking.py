"""
Alert ranking - orders detector output for display

Severity first (high, medium, low), newest first within a severity.
"""

from typing import Iterable, List

from models.data_models import (
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Alert,
    AlertSummary,
)

SEVERITY_ORDER = {
    SEVERITY_HIGH: 0,
    SEVERITY_MEDIUM: 1,
    SEVERITY_LOW: 2,
}


def severity_rank(severity: str) -> int:
    """Sort position of a severity; unknown values sort last"""
    return SEVERITY_ORDER.get(severity, len(SEVERITY_ORDER))


def rank_alerts(alerts: Iterable[Alert]) -> List[Alert]:
    """
    Sort alerts by severity, then by timestamp descending.
    Exact ties keep emission order (both passes are stable sorts).
    """
    ranked = sorted(alerts, key=lambda a: a.timestamp, reverse=True)
    ranked.sort(key=lambda a: severity_rank(a.severity))
    return ranked


def summarize_alerts(alerts: Iterable[Alert], limit: int = 5) -> AlertSummary:
    """Ranked alerts with the top `limit` split out for the compact view"""
    ranked = rank_alerts(alerts)
    return AlertSummary(total=len(ranked), top=ranked[:limit], all=ranked)
