"""
ReportBuilder Class - Builds log analysis reports

A report reruns the detector set over a date-bounded slice of the snapshot
and adds traffic, error and recommendation sections. Rendering is left to
the caller; the builder returns a SecurityReport dataclass.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from models.data_models import (
    Alert,
    ErrorEndpointStat,
    LogRecord,
    MethodStat,
    Recommendation,
    ReportSummary,
    SecurityReport,
)
from services.aggregator import Aggregator
from services.detectors import (
    BRUTE_FORCE,
    ENDPOINT_SCANNING,
    SQL_INJECTION,
    DetectionEngine,
)
from services.ranking import SEVERITY_ORDER, rank_alerts
from utils.helpers import percent

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Log Analysis Report"
REPORT_SECTIONS = ("summary", "activity", "errors", "security", "recommendations")
TOP_ERROR_LIMIT = 5

SERVER_ERROR_RATE_LIMIT = 0.05
CLIENT_ERROR_RATE_LIMIT = 0.15
MIN_RECOMMENDATIONS = 3


def describe_period(
    days: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> str:
    """Human label for the report period"""
    if days is not None:
        return "Last 24 hours" if days == 1 else f"Last {days} days"
    start_label = start.date().isoformat() if start else "beginning"
    end_label = end.date().isoformat() if end else "now"
    return f"{start_label} to {end_label}"


def parse_sections(raw: Optional[str]) -> List[str]:
    """Comma separated section names; empty means every section"""
    if not raw:
        return list(REPORT_SECTIONS)
    sections = [s.strip().lower() for s in raw.split(",") if s.strip()]
    unknown = [s for s in sections if s not in REPORT_SECTIONS]
    if unknown:
        raise ValueError(f"Unknown report sections: {', '.join(unknown)}")
    return sections


def build_recommendations(
    alerts: List[Alert],
    server_error_rate: float,
    client_error_rate: float,
) -> List[Recommendation]:
    """Rule-based advice keyed off error rates and alert categories"""
    recs: List[Recommendation] = []

    if server_error_rate > SERVER_ERROR_RATE_LIMIT:
        recs.append(Recommendation(
            title="Investigate Server Errors",
            description=(
                f"Your system is experiencing a high rate of server errors "
                f"({server_error_rate * 100:.1f}%). Review application logs and monitoring "
                f"systems to identify the root causes of these 5xx errors. Consider "
                f"implementing better error tracking and monitoring."
            ),
        ))

    if client_error_rate > CLIENT_ERROR_RATE_LIMIT:
        recs.append(Recommendation(
            title="Address Client Errors",
            description=(
                f"Your API is seeing a high rate of client errors "
                f"({client_error_rate * 100:.1f}%). This may indicate issues with API "
                f"documentation, client implementations, or validation logic. Consider "
                f"reviewing your API documentation and client SDKs."
            ),
        ))

    by_category: Dict[str, int] = {}
    for a in alerts:
        by_category[a.category] = by_category.get(a.category, 0) + 1

    if by_category.get(SQL_INJECTION):
        recs.append(Recommendation(
            title="Strengthen Input Validation",
            description=(
                f"{by_category[SQL_INJECTION]} potential SQL injection attempts were detected. "
                f"Review your input validation logic and use parameterized queries. Consider "
                f"implementing a Web Application Firewall (WAF) to protect against common "
                f"attack vectors."
            ),
        ))

    if by_category.get(BRUTE_FORCE):
        recs.append(Recommendation(
            title="Implement Rate Limiting",
            description=(
                "Multiple brute force login attempts were detected. Implement rate limiting, "
                "progressive delays, CAPTCHA, and account lockout policies to protect against "
                "automated login attempts."
            ),
        ))

    if by_category.get(ENDPOINT_SCANNING):
        recs.append(Recommendation(
            title="Enhance API Security",
            description=(
                f"{by_category[ENDPOINT_SCANNING]} instances of potential endpoint scanning were "
                f"detected. Consider implementing API throttling, requiring authentication for "
                f"all endpoints, and adopting the principle of least privilege for API access."
            ),
        ))

    # Generic advice when few specific rules fired
    if len(recs) < MIN_RECOMMENDATIONS:
        recs.append(Recommendation(
            title="Optimize Response Times",
            description=(
                "Consider implementing caching strategies and optimizing database queries to "
                "improve overall system performance. Monitor slow endpoints and set up alerting "
                "for performance degradation."
            ),
        ))
        if not any("API Security" in r.title for r in recs):
            recs.append(Recommendation(
                title="Regular Security Audits",
                description=(
                    "Implement regular security audits and penetration testing to identify "
                    "vulnerabilities before they can be exploited. Keep all libraries and "
                    "dependencies updated to the latest secure versions."
                ),
            ))
        recs.append(Recommendation(
            title="Enhance Monitoring Coverage",
            description=(
                "Expand your monitoring to include more detailed metrics about API performance, "
                "user behavior, and system health. Set up alerts for unusual patterns that may "
                "indicate security issues or performance problems."
            ),
        ))

    return recs


class ReportBuilder:
    """
    Builds a structured report for a slice of the log snapshot.
    Responsibilities:
    - Restrict records to the report period
    - Rerun the detection engine over that period
    - Compute status classes, method shares and top error endpoints
    - Derive recommendations
    """

    def __init__(self, engine: Optional[DetectionEngine] = None):
        self.engine = engine or DetectionEngine()

    @staticmethod
    def method_distribution(records: List[LogRecord]) -> List[MethodStat]:
        counts = Aggregator.count_by(records, lambda r: r.method)
        return [
            MethodStat(method=m, count=c, percentage=percent(c, len(records)))
            for m, c in counts.items()
        ]

    @staticmethod
    def top_error_endpoints(records: List[LogRecord], limit: int = TOP_ERROR_LIMIT) -> List[ErrorEndpointStat]:
        """Most frequent "path (status)" pairs among 4xx/5xx records"""
        errors = [r for r in records if r.status is not None and r.status >= 400]
        counts = Aggregator.count_by(errors, lambda r: f"{r.path} ({r.status})" if r.path else None)
        return [
            ErrorEndpointStat(endpoint=k, count=c, percentage=percent(c, len(errors)))
            for k, c in list(counts.items())[:limit]
        ]

    @staticmethod
    def group_by_severity(alerts: Iterable[Alert]) -> Dict[str, List[Alert]]:
        grouped: Dict[str, List[Alert]] = {sev: [] for sev in SEVERITY_ORDER}
        for a in alerts:
            grouped.setdefault(a.severity, []).append(a)
        return grouped

    def build(
        self,
        records: List[LogRecord],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        title: str = DEFAULT_TITLE,
        period: Optional[str] = None,
        sections: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> SecurityReport:
        """Build the report for records with start <= timestamp <= end"""
        wanted = set(sections) if sections is not None else set(REPORT_SECTIONS)
        scoped = Aggregator.filter_by_range(records, start, end)

        total = len(scoped)
        success = sum(1 for r in scoped if r.status is not None and 200 <= r.status < 300)
        client_errors = sum(1 for r in scoped if r.status is not None and 400 <= r.status < 500)
        server_errors = sum(1 for r in scoped if r.status is not None and r.status >= 500)
        client_rate = client_errors / total if total else 0.0
        server_rate = server_errors / total if total else 0.0

        alerts = rank_alerts(self.engine.run(scoped))

        report = SecurityReport(
            title=title or DEFAULT_TITLE,
            period=period or describe_period(start=start, end=end),
            generated_at=now or datetime.now(timezone.utc),
            alerts=alerts,
        )

        if "summary" in wanted:
            report.summary = ReportSummary(
                total_requests=total,
                unique_ips=len({r.ip_address for r in scoped if r.ip_address}),
                success_requests=success,
                client_errors=client_errors,
                server_errors=server_errors,
                success_rate=percent(success, total),
                security_issues=len(alerts),
            )
        if "activity" in wanted:
            report.methods = self.method_distribution(scoped)
        if "errors" in wanted:
            report.client_error_rate = percent(client_errors, total)
            report.server_error_rate = percent(server_errors, total)
            report.top_errors = self.top_error_endpoints(scoped)
        if "security" in wanted:
            report.alerts_by_severity = self.group_by_severity(alerts)
        if "recommendations" in wanted:
            report.recommendations = build_recommendations(alerts, server_rate, client_rate)

        logger.info("Built report %r over %d records with %d alerts", report.title, total, len(alerts))
        return report


def report_to_dict(report: SecurityReport) -> Dict[str, object]:
    """JSON-ready form of a SecurityReport"""
    def alerts_json(alerts: Iterable[Alert]) -> List[Dict[str, object]]:
        return [a.to_dict() for a in alerts]

    return {
        "title": report.title,
        "period": report.period,
        "generated_at": report.generated_at.isoformat(),
        "summary": asdict(report.summary) if report.summary else None,
        "methods": [asdict(m) for m in report.methods] if report.methods is not None else None,
        "errors": (
            {
                "client_error_rate": report.client_error_rate,
                "server_error_rate": report.server_error_rate,
                "top_endpoints": [asdict(e) for e in report.top_errors],
            }
            if report.top_errors is not None
            else None
        ),
        "security": (
            {sev: alerts_json(items) for sev, items in report.alerts_by_severity.items()}
            if report.alerts_by_severity is not None
            else None
        ),
        "recommendations": (
            [asdict(r) for r in report.recommendations]
            if report.recommendations is not None
            else None
        ),
        "security_issues": len(report.alerts),
    }
