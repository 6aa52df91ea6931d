"""
Security Detectors - Heuristic threat detection over a log snapshot

Each rule is a plain function from records (or records grouped by source IP)
to a list of Alert objects. Rules never mutate their input and keep no state
between calls, so the same snapshot always yields the same alerts.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from config import DetectionConfig
from models.data_models import (
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    Alert,
    LogRecord,
)
from utils.helpers import minutes_between, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = DetectionConfig()

# ─── ALERT VOCABULARY ──────────────────────────────────────────────────────────

BRUTE_FORCE = "brute_force"
SQL_INJECTION = "sql_injection"
UNUSUAL_METHOD = "unusual_method"
ENDPOINT_SCANNING = "endpoint_scanning"
HIGH_ERROR_RATE = "high_error_rate"

TITLES = {
    BRUTE_FORCE: "Potential Brute Force Attack",
    SQL_INJECTION: "Potential SQL Injection Attempt",
    UNUSUAL_METHOD: "Unusual HTTP Method",
    ENDPOINT_SCANNING: "Potential Endpoint Scanning",
    HIGH_ERROR_RATE: "High Server Error Rate",
}

# Priority order matters: the first pattern found is the one reported.
# This is a keyword heuristic, not a SQL parser.
SQL_PATTERNS = (
    "SELECT",
    "UNION",
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "1=1",
    "OR 1=1",
    "' OR '",
    "' OR 1=1",
    "--",
    "/*",
    "EXEC",
    "EXECUTE",
    "xp_",
    "sp_",
)

COMMON_METHODS = frozenset(["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"])

FAILED_AUTH_STATUSES = (401, 403)


# ─── GROUPING ──────────────────────────────────────────────────────────────────

def group_by_ip(records: Iterable[LogRecord]) -> Dict[str, List[LogRecord]]:
    """
    Partition records by source IP, keeping arrival order inside each group.
    Records without an IP are left out of the mapping.
    """
    groups: Dict[str, List[LogRecord]] = {}
    for r in records:
        if not r.ip_address:
            continue
        groups.setdefault(r.ip_address, []).append(r)
    return groups


# ─── Rule 1: Brute Force ───────────────────────────────────────────────────────

def detect_brute_force(
    ip_groups: Dict[str, List[LogRecord]],
    config: DetectionConfig = DEFAULT_CONFIG,
) -> List[Alert]:
    """
    Flags IPs with at least N rejected (401/403) requests to a login path.
    One alert per IP, no sub-windowing.
    """
    alerts: List[Alert] = []

    for ip, records in ip_groups.items():
        failed = [
            r for r in records
            if r.status in FAILED_AUTH_STATUSES and r.path and "login" in r.path.lower()
        ]
        if len(failed) < config.brute_force_threshold:
            continue

        latest = max(r.timestamp for r in failed)
        earliest = min(r.timestamp for r in failed)
        span = round_half_up(minutes_between(earliest, latest))
        count = len(failed)

        alerts.append(Alert(
            title=TITLES[BRUTE_FORCE],
            category=BRUTE_FORCE,
            message=f"{count} failed login attempts from IP {ip} within {span} minutes",
            severity=SEVERITY_HIGH if count >= config.brute_force_high_threshold else SEVERITY_MEDIUM,
            timestamp=latest,
            ip=ip,
            count=count,
        ))

    return alerts


# ─── Rule 2: SQL Injection ─────────────────────────────────────────────────────

def match_sql_pattern(text: Optional[str]) -> Optional[str]:
    """First suspicious SQL pattern contained in text (case-insensitive)"""
    if not text:
        return None
    upper = text.upper()
    for pattern in SQL_PATTERNS:
        if pattern.upper() in upper:
            return pattern
    return None


def detect_sql_injection(
    records: Sequence[LogRecord],
    config: DetectionConfig = DEFAULT_CONFIG,
) -> List[Alert]:
    """
    Flags every record whose path (or, failing that, message + details)
    contains a suspicious SQL fragment. No dedup: N hits give N alerts.
    """
    alerts: List[Alert] = []

    for r in records:
        if not r.ip_address:
            continue

        pattern = match_sql_pattern(r.path)
        if pattern is None:
            pattern = match_sql_pattern((r.message or "") + (r.details or ""))
        if pattern is None:
            continue

        message = f'Suspicious SQL pattern "{pattern}" detected from IP {r.ip_address}'
        if r.path:
            message += f" on {r.path}"

        alerts.append(Alert(
            title=TITLES[SQL_INJECTION],
            category=SQL_INJECTION,
            message=message,
            severity=SEVERITY_HIGH,
            timestamp=r.timestamp,
            ip=r.ip_address,
            path=r.path,
            pattern=pattern,
        ))

    return alerts


# ─── Rule 3: Unusual HTTP Method ───────────────────────────────────────────────

def detect_unusual_methods(
    records: Sequence[LogRecord],
    config: DetectionConfig = DEFAULT_CONFIG,
) -> List[Alert]:
    """Flags each request using a method outside the common whitelist."""
    alerts: List[Alert] = []

    for r in records:
        if not r.method or not r.ip_address:
            continue
        if r.method in COMMON_METHODS:
            continue

        alerts.append(Alert(
            title=TITLES[UNUSUAL_METHOD],
            category=UNUSUAL_METHOD,
            message=f'Uncommon HTTP method "{r.method}" used by IP {r.ip_address}',
            severity=SEVERITY_LOW,
            timestamp=r.timestamp,
            ip=r.ip_address,
            method=r.method,
            path=r.path,
        ))

    return alerts


# ─── Rule 4: Endpoint Scanning ─────────────────────────────────────────────────

def detect_endpoint_scanning(
    ip_groups: Dict[str, List[LogRecord]],
    config: DetectionConfig = DEFAULT_CONFIG,
) -> List[Alert]:
    """
    Flags IPs hitting many distinct paths in a short burst.

    A window of `scan_window_size` consecutive requests (in time order) is
    moved forward one request at a time. After a hit the scan jumps a full
    window ahead, so one burst produces one alert.
    """
    alerts: List[Alert] = []
    size = config.scan_window_size

    for ip, records in ip_groups.items():
        if len(records) < size:
            continue

        ordered = sorted(records, key=lambda r: r.timestamp)

        i = 0
        while i <= len(ordered) - size:
            window = ordered[i:i + size]
            start, end = window[0].timestamp, window[-1].timestamp
            elapsed = minutes_between(start, end)

            if elapsed <= config.scan_time_window_minutes:
                unique_paths = {r.path for r in window if r.path}
                if len(unique_paths) >= size:
                    alerts.append(Alert(
                        title=TITLES[ENDPOINT_SCANNING],
                        category=ENDPOINT_SCANNING,
                        message=(
                            f"IP {ip} accessed {len(unique_paths)} different endpoints "
                            f"within {elapsed:.1f} minutes"
                        ),
                        severity=SEVERITY_MEDIUM,
                        timestamp=end,
                        ip=ip,
                        count=len(unique_paths),
                    ))
                    i += size
                    continue
            i += 1

    return alerts


# ─── Rule 5: High Error Rate ───────────────────────────────────────────────────

def detect_high_error_rate(
    records: Sequence[LogRecord],
    config: DetectionConfig = DEFAULT_CONFIG,
) -> List[Alert]:
    """Flags a snapshot where 5xx responses make up a large share of traffic."""
    total = len(records)
    if total < config.error_rate_min_sample:
        return []

    server_errors = [r for r in records if r.status is not None and r.status >= 500]
    rate = len(server_errors) / total

    if rate < config.error_rate_threshold or len(server_errors) < config.error_rate_min_count:
        return []

    return [Alert(
        title=TITLES[HIGH_ERROR_RATE],
        category=HIGH_ERROR_RATE,
        message=(
            f"Server error rate is {rate * 100:.1f}% "
            f"({len(server_errors)} out of {total} requests)"
        ),
        severity=SEVERITY_HIGH if rate >= config.error_rate_high_threshold else SEVERITY_MEDIUM,
        timestamp=max(r.timestamp for r in server_errors),
        count=len(server_errors),
    )]


# ─── Run All Rules ─────────────────────────────────────────────────────────────

class DetectionEngine:
    """Runs the full rule set over one snapshot of records."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def run(self, records: Sequence[LogRecord]) -> List[Alert]:
        """
        Runs all detection rules against the snapshot.
        Returns alerts in rule order; ranking is left to the caller.
        """
        records = list(records)
        ip_groups = group_by_ip(records)

        alerts: List[Alert] = []
        alerts += detect_brute_force(ip_groups, self.config)
        alerts += detect_sql_injection(records, self.config)
        alerts += detect_unusual_methods(records, self.config)
        alerts += detect_endpoint_scanning(ip_groups, self.config)
        alerts += detect_high_error_rate(records, self.config)

        logger.info(
            "Detection run over %d records (%d source IPs) produced %d alerts",
            len(records), len(ip_groups), len(alerts),
        )
        return alerts
