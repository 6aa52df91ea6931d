import itertools
from datetime import datetime, timedelta, timezone

import pytest

from models.data_models import LogRecord

BASE_TS = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_record():
    """Factory for LogRecord values; `minutes` offsets from BASE_TS"""
    counter = itertools.count(1)

    def _make(minutes: float = 0, **fields) -> LogRecord:
        fields.setdefault("id", f"rec-{next(counter)}")
        fields.setdefault("timestamp", BASE_TS + timedelta(minutes=minutes))
        return LogRecord(**fields)

    return _make


@pytest.fixture
def log_file(tmp_path):
    return str(tmp_path / "data" / "logs.jsonl")
