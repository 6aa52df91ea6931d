"""
LogParser Class - Handles parsing and normalization

This module parses raw log lines into structured LogRecord objects.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from models.data_models import LOG_LEVELS, LogRecord
from utils.helpers import (
    first_present,
    parse_ts,
    safe_float,
    safe_int,
    safe_str,
    unwrap_extended,
)

logger = logging.getLogger(__name__)

LEVEL_ALIASES = {
    "warning": "warn",
    "critical": "fatal",
    "err": "error",
    "trace": "debug",
}

SECURITY_KEYWORDS = (
    "failed login",
    "sql injection",
    "attack",
    "invalid",
    "unauthorized",
    "forbidden",
    "suspicious",
    "brute force",
    "invalid credentials",
)

SCANNER_AGENTS = ("sqlmap", "nmap", "nikto", "burp")


class LogParser:
    """
    Parses raw log lines into structured LogRecord objects.
    Responsibilities:
    - Parse JSON lines
    - Normalize client log shapes (camelCase, snake_case, nested request/response)
    - Classify records (request, error, security relevant)
    """

    @staticmethod
    def parse_json(line: str) -> Optional[Dict[str, Any]]:
        """Parse JSON line, return None if invalid or not an object"""
        try:
            obj = json.loads(line)
        except ValueError:
            logger.debug("Skipping non-JSON line: %.80s", line)
            return None
        return obj if isinstance(obj, dict) else None

    @staticmethod
    def normalize_level(raw: Any) -> str:
        level = str(raw or "").strip().lower()
        level = LEVEL_ALIASES.get(level, level)
        return level if level in LOG_LEVELS else "info"

    @classmethod
    def normalize(cls, raw: Dict[str, Any], fallback_id: str = "") -> Optional[LogRecord]:
        """
        Normalize raw log dict into structured LogRecord.
        Returns None when no usable timestamp is present.
        """
        ts = parse_ts(unwrap_extended(
            first_present(raw, ("timestamp",), ("time",), ("createdAt",), ("meta", "timestamp"))
        ))
        if ts is None:
            logger.debug("Dropping record without timestamp (id=%s)", fallback_id)
            return None

        # Mongo exports wrap ids and dates: {"_id": {"$oid": "..."}}
        record_id = unwrap_extended(first_present(raw, ("id",), ("_id",)))

        ip = first_present(
            raw,
            ("ipAddress",),
            ("ip_address",),
            ("ip",),
            ("client_ip",),
            ("request", "ip"),
        )

        method = first_present(raw, ("method",), ("request", "method"), ("http", "method"))
        path = first_present(
            raw,
            ("path",),
            ("request", "path"),
            ("http", "path"),
            ("url",),
            ("endpoint",),
        )

        status_raw = unwrap_extended(first_present(
            raw,
            ("status",),
            ("status_code",),
            ("statusCode",),
            ("response", "status_code"),
            ("http", "status"),
        ))

        duration_raw = first_present(
            raw,
            ("responseTime",),
            ("response_time_ms",),
            ("duration_ms",),
            ("latency_ms",),
            ("timing", "duration_ms"),
        )

        headers = first_present(raw, ("headers",), ("request", "headers"))
        user = first_present(raw, ("user",))
        if isinstance(user, dict):
            user = user.get("username") or user.get("name") or unwrap_extended(user.get("id"))

        return LogRecord(
            id=str(record_id) if record_id is not None else fallback_id,
            timestamp=ts,
            ip_address=safe_str(ip),
            method=safe_str(method),
            path=safe_str(path),
            status=safe_int(status_raw),
            level=cls.normalize_level(raw.get("level") or raw.get("severity")),
            message=safe_str(raw.get("message")),
            details=safe_str(raw.get("details")),
            user_agent=safe_str(
                first_present(raw, ("userAgent",), ("user_agent",), ("headers", "user-agent"))
            ),
            headers=headers if isinstance(headers, dict) else None,
            body=first_present(raw, ("body",), ("request", "body")),
            user=safe_str(user),
            user_id=safe_str(unwrap_extended(
                first_present(raw, ("userId",), ("user_id",), ("user", "id"))
            )),
            activity=safe_str(raw.get("activity")),
            request_id=safe_str(first_present(raw, ("requestId",), ("request_id",))),
            stack=safe_str(raw.get("stack")),
            response_time_ms=safe_float(duration_raw),
        )

    @classmethod
    def parse_line(cls, line: str, fallback_id: str = "") -> Optional[LogRecord]:
        raw = cls.parse_json(line)
        if raw is None:
            return None
        return cls.normalize(raw, fallback_id=fallback_id)

    @staticmethod
    def stamp(raw: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Copy of raw with a timestamp filled in when missing"""
        out = dict(raw)
        if not out.get("timestamp"):
            out["timestamp"] = (now or datetime.now(timezone.utc)).isoformat()
        return out

    @staticmethod
    def is_request(record: LogRecord) -> bool:
        """Check if record represents an HTTP request"""
        return bool(record.path and record.method)

    @staticmethod
    def is_error(record: LogRecord) -> bool:
        """Check if record represents an error (status >= 400 or error/fatal level)"""
        if record.status is not None and record.status >= 400:
            return True
        return record.level in ("error", "fatal")

    @staticmethod
    def is_security_relevant(record: LogRecord) -> bool:
        """Whether the record deserves a security look in the detail view"""
        activity = (record.activity or "").lower()
        if "login failed" in activity or "sql injection" in activity or "scan" in activity:
            return True
        if record.status is not None and record.status >= 400:
            return True

        if record.details:
            details = record.details.lower()
            if any(keyword in details for keyword in SECURITY_KEYWORDS):
                return True

        if record.user_agent:
            agent = record.user_agent.lower()
            if any(tool in agent for tool in SCANNER_AGENTS):
                return True

        return False
