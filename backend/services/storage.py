"""
LogStore Class - Handles file I/O operations

This module manages log file storage and retrieval.
"""

import json
import logging
import os
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models.data_models import HealthStatus, LogRecord
from services.parser import LogParser

logger = logging.getLogger(__name__)

UPLOAD_LIST_KEYS = ("logs", "events", "entries", "data", "items")


def _dump_objects(items: List[Any]) -> List[str]:
    return [json.dumps(item, ensure_ascii=False) for item in items if isinstance(item, dict)]


class LogStore:
    """
    Manages log file storage and retrieval.
    Responsibilities:
    - Save uploaded log files
    - Append single ingested records
    - Load a bounded snapshot of normalized records
    - Provide file statistics
    """

    def __init__(self, file_path: str, max_snapshot: Optional[int] = None):
        self.file_path = file_path
        self.max_snapshot = max_snapshot

    def save_upload(self, content: bytes) -> Dict[str, Any]:
        """
        Replace the log file with an uploaded batch.
        Returns the detected shape, the lines written and how many of those
        lines load as records (the rest lack a usable timestamp).
        """
        if not content:
            raise ValueError("Empty file content")

        text = content.decode("utf-8", errors="ignore").strip()
        if not text:
            raise ValueError("Empty file after decoding")

        mode, lines = self._split_upload(text)
        records = sum(1 for ln in lines if LogParser.parse_line(ln) is not None)

        self._ensure_parent_dir()
        with open(self.file_path, "w", encoding="utf-8") as f:
            f.writelines(ln + "\n" for ln in lines)

        logger.info("Stored %d lines (%d records, %s) in %s", len(lines), records, mode, self.file_path)
        return {"mode": mode, "written": len(lines), "records": records}

    def append(self, item: Dict[str, Any]) -> None:
        """Append one raw log object as a JSONL line"""
        self._ensure_parent_dir()
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(item, ensure_ascii=False, default=str) + "\n")

    def read_lines(self) -> Iterable[str]:
        """Iterator over raw lines in log file"""
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        yield line
        except FileNotFoundError:
            return

    def load_records(self) -> List[LogRecord]:
        """
        Load normalized records from the file.
        Only the newest max_snapshot records (by file position) are kept.
        """
        records = deque(maxlen=self.max_snapshot) if self.max_snapshot else []
        skipped = 0

        for line_no, line in enumerate(self.read_lines(), 1):
            record = LogParser.parse_line(line, fallback_id=f"line-{line_no}")
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if skipped:
            logger.debug("Skipped %d unparsable lines in %s", skipped, self.file_path)
        return list(records)

    def stat(self) -> HealthStatus:
        """Get file statistics"""
        exists = os.path.exists(self.file_path)
        size_bytes = os.path.getsize(self.file_path) if exists else 0
        total_lines = sum(1 for _ in self.read_lines()) if exists else 0

        return HealthStatus(
            status="ok",
            log_file_exists=exists,
            path=os.path.abspath(self.file_path),
            size_bytes=size_bytes,
            total_lines=total_lines,
        )

    def _ensure_parent_dir(self) -> None:
        """Create parent directories if needed"""
        os.makedirs(os.path.dirname(os.path.abspath(self.file_path)), exist_ok=True)

    @staticmethod
    def _split_upload(text: str) -> Tuple[str, List[str]]:
        """JSON array, wrapped list, single object, else raw JSONL"""
        try:
            obj = json.loads(text)
        except ValueError:
            obj = None

        if isinstance(obj, dict):
            for key in UPLOAD_LIST_KEYS:
                if isinstance(obj.get(key), list):
                    return f"json_object.{key}", _dump_objects(obj[key])
            return "single_json_object", _dump_objects([obj])
        if isinstance(obj, list):
            return "json_array", _dump_objects(obj)
        return "raw_jsonl", [ln.strip() for ln in text.splitlines() if ln.strip()]
