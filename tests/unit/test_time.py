"""Tests for UTC helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from lifecycle.utils.time import ensure_utc, format_timestamp, parse_timestamp, utc_now


class TestUtcHelpers:
    """Test UTC time helpers."""

    def test_utc_now_is_utc(self) -> None:
        dt = utc_now()
        assert dt.tzinfo is not None
        assert dt.tzinfo == UTC

    def test_format_timestamp_z_suffix(self) -> None:
        dt = datetime(2026, 2, 14, 12, 30, 45, 123456, tzinfo=UTC)
        result = format_timestamp(dt)
        assert result.endswith("Z")
        assert result == "2026-02-14T12:30:45.123456Z"

    def test_format_converts_offsets(self) -> None:
        eastern = timezone(timedelta(hours=-5))
        dt = datetime(2026, 2, 14, 7, 30, tzinfo=eastern)
        assert format_timestamp(dt) == "2026-02-14T12:30:00.000000Z"

    def test_parse_timestamp_roundtrip(self) -> None:
        dt = datetime(2026, 2, 14, 12, 30, 45, 123456, tzinfo=UTC)
        formatted = format_timestamp(dt)
        parsed = parse_timestamp(formatted)
        assert parsed == dt
        assert parsed.tzinfo == UTC

    def test_ensure_utc_naive(self) -> None:
        naive = datetime(2026, 2, 14, 12, 0)
        assert ensure_utc(naive) == datetime(2026, 2, 14, 12, 0, tzinfo=UTC)

    def test_parse_naive_assumed_utc(self) -> None:
        parsed = parse_timestamp("2026-02-14T12:00:00")
        assert parsed.tzinfo == UTC
