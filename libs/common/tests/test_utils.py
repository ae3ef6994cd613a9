from __future__ import annotations

from datetime import datetime

import pytest
from common.utils import clamp, now_utc_iso, parse_iso_datetime, word_count

pytestmark = pytest.mark.unit


def test_now_utc_iso_returns_parseable_utc_timestamp() -> None:
    parsed = datetime.fromisoformat(now_utc_iso())
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() is not None
    assert parsed.utcoffset().total_seconds() == 0


def test_parse_iso_datetime_handles_zulu_naive_and_invalid_values() -> None:
    zulu = parse_iso_datetime("2026-03-01T10:00:00Z")
    naive = parse_iso_datetime("2026-03-01T10:00:00")

    assert zulu is not None and zulu.utcoffset().total_seconds() == 0
    assert naive is not None and naive.tzinfo is not None
    assert parse_iso_datetime("not-a-date") is None
    assert parse_iso_datetime(None) is None


def test_word_count_and_clamp() -> None:
    assert word_count("  I led   the migration ") == 4
    assert word_count("") == 0
    assert clamp(120, 20, 90) == 90
    assert clamp(3, 20, 90) == 20
    assert clamp(45.5, 20, 90) == 45.5
