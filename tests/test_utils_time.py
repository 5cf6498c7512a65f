"""
Tests for utils.time module - UTC timestamp utilities.

- All timestamps are timezone-aware (UTC)
- Formats are ISO 8601 with a 'Z' suffix
- Elapsed milliseconds are never negative
"""

from datetime import UTC

import pytest
from freezegun import freeze_time

from visibility_scanner.utils.time import elapsed_ms, parse_timestamp, utc_now, utc_timestamp


class TestUtcTimestamp:
    """Test utc_now() and utc_timestamp()."""

    def test_utc_now_is_timezone_aware(self):
        assert utc_now().tzinfo == UTC

    @freeze_time("2025-11-02 08:30:45.123456")
    def test_timestamp_format(self):
        assert utc_timestamp() == "2025-11-02T08:30:45Z"

    def test_timestamps_sort_lexicographically(self):
        with freeze_time("2025-01-09 23:59:59"):
            earlier = utc_timestamp()
        with freeze_time("2025-01-10 00:00:00"):
            later = utc_timestamp()
        assert earlier < later


class TestParseTimestamp:
    """Test parse_timestamp()."""

    def test_round_trip(self):
        parsed = parse_timestamp("2025-11-02T08:30:45Z")
        assert parsed.year == 2025
        assert parsed.tzinfo is not None
        assert parsed.utcoffset().total_seconds() == 0

    def test_requires_z_suffix(self):
        with pytest.raises(ValueError, match="must end with 'Z'"):
            parse_timestamp("2025-11-02T08:30:45")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError, match="Invalid ISO 8601"):
            parse_timestamp("yesterdayZ")


@pytest.mark.parametrize(
    "start,end,expected",
    [(1.0, 1.25, 250), (1.0, 1.0004, 0), (2.0, 1.0, 0)],
)
def test_elapsed_ms(start, end, expected):
    assert elapsed_ms(start, end) == expected
