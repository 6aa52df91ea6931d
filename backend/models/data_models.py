"""
Data Models (DTOs - Data Transfer Objects)

This module contains all dataclass definitions used throughout the application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


LOG_LEVELS = ("debug", "info", "warn", "error", "fatal")

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"


@dataclass(frozen=True)
class LogRecord:
    """Represents a single normalized request/activity log record"""
    id: str
    timestamp: datetime
    ip_address: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    status: Optional[int] = None
    level: str = "info"
    message: Optional[str] = None
    details: Optional[str] = None
    user_agent: Optional[str] = None
    headers: Optional[Dict[str, Any]] = None
    body: Any = None
    user: Optional[str] = None
    user_id: Optional[str] = None
    activity: Optional[str] = None
    request_id: Optional[str] = None
    stack: Optional[str] = None
    response_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "ipAddress": self.ip_address,
            "method": self.method,
            "path": self.path,
            "status": self.status,
            "level": self.level,
            "message": self.message,
            "details": self.details,
            "userAgent": self.user_agent,
            "headers": self.headers,
            "body": self.body,
            "user": self.user,
            "userId": self.user_id,
            "activity": self.activity,
            "requestId": self.request_id,
            "stack": self.stack,
            "responseTime": self.response_time_ms,
        }


@dataclass(frozen=True)
class Alert:
    """A single detector finding"""
    title: str
    category: str
    message: str
    severity: str
    timestamp: datetime
    ip: Optional[str] = None
    path: Optional[str] = None
    method: Optional[str] = None
    count: Optional[int] = None
    pattern: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "title": self.title,
            "category": self.category,
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat(),
        }
        # Evidence fields only when the detector set them
        for key in ("ip", "path", "method", "count", "pattern"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


@dataclass
class AlertSummary:
    """Ranked alerts split into a compact view and the full list"""
    total: int
    top: List[Alert]
    all: List[Alert]

    @property
    def has_more(self) -> bool:
        return self.total > len(self.top)

    def to_dict(self, view: str = "compact") -> Dict[str, Any]:
        alerts = self.all if view == "all" else self.top
        return {
            "security_issues": self.total,
            "has_more": self.has_more,
            "alerts": [a.to_dict() for a in alerts],
        }


@dataclass
class LogFilter:
    """Dashboard filter criteria; empty fields match everything"""
    level: Optional[str] = None
    method: Optional[str] = None
    status: Optional[str] = None
    path: Optional[str] = None
    user_id: Optional[str] = None
    ip: Optional[str] = None
    search: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class HealthStatus:
    """Health check response"""
    status: str
    log_file_exists: bool
    path: str
    size_bytes: int
    total_lines: int


@dataclass
class Metrics:
    """Dashboard headline metrics"""
    total_requests: int
    error_count: int
    avg_response_time: Optional[float]
    security_issues: int


@dataclass
class ErrorEndpointStat:
    """Error frequency for one "path (status)" key"""
    endpoint: str
    count: int
    percentage: float


@dataclass
class MethodStat:
    """HTTP method share of all requests"""
    method: str
    count: int
    percentage: float


@dataclass
class Recommendation:
    title: str
    description: str


@dataclass
class ReportSummary:
    total_requests: int
    unique_ips: int
    success_requests: int
    client_errors: int
    server_errors: int
    success_rate: float
    security_issues: int


@dataclass
class SecurityReport:
    """Structured report consumed by any renderer"""
    title: str
    period: str
    generated_at: datetime
    summary: Optional[ReportSummary] = None
    methods: Optional[List[MethodStat]] = None
    client_error_rate: Optional[float] = None
    server_error_rate: Optional[float] = None
    top_errors: Optional[List[ErrorEndpointStat]] = None
    alerts_by_severity: Optional[Dict[str, List[Alert]]] = None
    recommendations: Optional[List[Recommendation]] = None
    alerts: List[Alert] = field(default_factory=list)
