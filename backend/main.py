from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Body, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

import config
from models.data_models import LogFilter, LogRecord
from services.aggregator import SORT_FIELDS, TIME_BUCKETS, Aggregator
from services.detectors import DetectionEngine
from services.parser import LogParser
from services.ranking import summarize_alerts
from services.report import ReportBuilder, describe_period, parse_sections, report_to_dict
from services.storage import LogStore
from utils.helpers import parse_ts

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("log_dashboard")

API_PREFIX = config.API_PREFIX
MAX_DAYS = 365

store = LogStore(config.LOG_FILE_PATH, max_snapshot=config.MAX_SNAPSHOT)
aggregator = Aggregator(store)
engine = DetectionEngine(config.DetectionConfig.from_env())
report_builder = ReportBuilder(engine)

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────


def parse_query_ts(value: Optional[str], name: str) -> Optional[datetime]:
    """Parse an optional ISO date/time query parameter or fail with 400"""
    if not value:
        return None
    ts = parse_ts(value)
    if ts is None:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value!r}")
    return ts


def resolve_range(
    days: Optional[int],
    start: Optional[str],
    end: Optional[str],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """`days` counts back from now; otherwise explicit start/end bounds"""
    if days is not None:
        now = datetime.now(timezone.utc)
        return now - timedelta(days=days), now
    return parse_query_ts(start, "start"), parse_query_ts(end, "end")


def original_url(request: Request) -> str:
    """Request path including its query string"""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def find_record(records: List[LogRecord], record_id: str) -> Optional[LogRecord]:
    for r in records:
        if r.id == record_id:
            return r
    return None


# ──────────────────────────────────────────────────────────────────────────────
# App
# ──────────────────────────────────────────────────────────────────────────────

app = FastAPI(title="Log Analysis Dashboard (Logs → Security Alerts)")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────────────────────────────────────
# Ingest
# ──────────────────────────────────────────────────────────────────────────────


@app.post(f"{API_PREFIX}/upload-log")
async def upload_log_file(file: UploadFile = File(...)) -> Dict[str, Any]:
    """
    Accepts:
      - JSONL
      - JSON array
      - Single JSON object
      - JSON object containing list under keys: logs/events/entries/data/items
    Stores as JSONL (overwrite).
    """
    content = await file.read()
    try:
        result = store.save_upload(content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        "Upload %s stored (%s, %d of %d lines usable)",
        file.filename, result["mode"], result["records"], result["written"],
    )
    return {"status": "ok", "saved_as": "jsonl", "path": store.stat().path, **result}


@app.post(f"{API_PREFIX}/logs", status_code=201)
def create_log(request: Request, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """
    Append one log record. A missing timestamp defaults to now; missing
    ipAddress, method and path default to the caller's own request.
    """
    raw = LogParser.stamp(payload)
    record = LogParser.normalize(raw)
    if record is None:
        raise HTTPException(status_code=400, detail="Invalid timestamp")

    missing = {
        key: value
        for key, value, current in (
            ("ipAddress", request.client.host if request.client else None, record.ip_address),
            ("method", request.method, record.method),
            ("path", original_url(request), record.path),
        )
        if current is None and value
    }
    if missing:
        raw.update(missing)
        record = LogParser.normalize(raw)

    store.append(raw)
    logger.info("Log created: %s from %s", record.activity or record.path, record.ip_address)
    return {"status": "created", "log": record.to_dict()}


# ──────────────────────────────────────────────────────────────────────────────
# Listing
# ──────────────────────────────────────────────────────────────────────────────


@app.get(f"{API_PREFIX}/logs")
def list_logs(
    level: Optional[str] = Query(None),
    method: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    path: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    ip: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    days: Optional[int] = Query(None, ge=1, le=MAX_DAYS),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    sort_by: str = Query("timestamp"),
    order: str = Query("desc"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
) -> Dict[str, Any]:
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"sort_by must be one of {', '.join(SORT_FIELDS)}")

    range_start, range_end = resolve_range(days, start, end)
    criteria = LogFilter(
        level=level,
        method=method,
        status=status.strip() if status else None,
        path=path.strip() if path else None,
        user_id=user_id.strip() if user_id else None,
        ip=ip.strip() if ip else None,
        search=search,
        start=range_start,
        end=range_end,
    )

    filtered = aggregator.apply_filters(aggregator.load_snapshot(), criteria)
    ordered = aggregator.sort_records(filtered, sort_by, order)
    items, total_pages = aggregator.paginate(ordered, page, page_size)

    return {
        "total": len(filtered),
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "logs": [
            {**r.to_dict(), "security_relevant": LogParser.is_security_relevant(r)}
            for r in items
        ],
    }


@app.get(f"{API_PREFIX}/logs/summary")
def logs_summary() -> Dict[str, Any]:
    return aggregator.summarize_logs(aggregator.load_snapshot())


@app.get(f"{API_PREFIX}/logs/{{record_id}}")
def get_log(record_id: str) -> Dict[str, Any]:
    record = find_record(aggregator.load_snapshot(), record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Log not found")
    return {**record.to_dict(), "security_relevant": LogParser.is_security_relevant(record)}


# ──────────────────────────────────────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────────────────────────────────────


@app.get(f"{API_PREFIX}/health")
def health() -> Dict[str, Any]:
    stat = store.stat()
    latest = aggregator.get_latest_timestamp(aggregator.load_snapshot())
    return {
        "status": stat.status,
        "log_file": {
            "exists": stat.log_file_exists,
            "path": stat.path,
            "size_bytes": stat.size_bytes,
            "total_lines": stat.total_lines,
        },
        "latest_timestamp": (latest.isoformat() if latest else None),
    }


# ──────────────────────────────────────────────────────────────────────────────
# Metrics + Charts
# ──────────────────────────────────────────────────────────────────────────────


@app.get(f"{API_PREFIX}/metrics")
def metrics(minutes: Optional[int] = Query(None, ge=1, le=60 * 24 * MAX_DAYS)) -> Dict[str, Any]:
    records = aggregator.load_snapshot()
    if minutes is not None:
        records = aggregator.filter_by_window(records, minutes)

    issues = len(engine.run(records))
    return {"metrics": asdict(aggregator.compute_metrics(records, security_issues=issues))}


@app.get(f"{API_PREFIX}/charts")
def charts(
    bucket: str = Query("hour"),
    days: Optional[int] = Query(None, ge=1, le=MAX_DAYS),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
) -> Dict[str, Any]:
    if bucket not in TIME_BUCKETS:
        raise HTTPException(status_code=400, detail=f"bucket must be one of {', '.join(TIME_BUCKETS)}")

    range_start, range_end = resolve_range(days, start, end)
    records = aggregator.filter_by_range(aggregator.load_snapshot(), range_start, range_end)
    return {"charts": aggregator.compute_distributions(records, bucket)}


# ──────────────────────────────────────────────────────────────────────────────
# Security alerts
# ──────────────────────────────────────────────────────────────────────────────


@app.get(f"{API_PREFIX}/security/alerts")
def security_alerts(
    view: str = Query("compact"),
    limit: int = Query(config.SUMMARY_ALERT_LIMIT, ge=1, le=100),
) -> Dict[str, Any]:
    """
    Detection always runs over the full snapshot, independent of any
    dashboard filters, so the issue count reflects every stored record.
    """
    if view not in ("compact", "all"):
        raise HTTPException(status_code=400, detail="view must be 'compact' or 'all'")

    summary = summarize_alerts(engine.run(aggregator.load_snapshot()), limit=limit)
    return summary.to_dict(view)


# ──────────────────────────────────────────────────────────────────────────────
# Report
# ──────────────────────────────────────────────────────────────────────────────


@app.get(f"{API_PREFIX}/report")
def report(
    title: str = Query("Log Analysis Report"),
    days: Optional[int] = Query(None, ge=1, le=MAX_DAYS),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    sections: Optional[str] = Query(None),
) -> Dict[str, Any]:
    try:
        wanted = parse_sections(sections)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    range_start, range_end = resolve_range(days, start, end)
    period = describe_period(days=days, start=range_start, end=range_end)

    built = report_builder.build(
        aggregator.load_snapshot(),
        start=range_start,
        end=range_end,
        title=title,
        period=period,
        sections=wanted,
    )
    return {"report": report_to_dict(built)}


# ──────────────────────────────────────────────────────────────────────────────
# Errors page
# ──────────────────────────────────────────────────────────────────────────────


@app.get(f"{API_PREFIX}/errors")
def errors(limit: int = Query(20, ge=1, le=200)) -> Dict[str, Any]:
    err_records = aggregator.compute_errors(aggregator.load_snapshot(), limit=limit)
    return {"errors": [r.to_dict() for r in err_records]}
