"""
UTC timestamp utilities for the visibility scanner.

All timestamps are UTC with an explicit 'Z' suffix. Batch rows, iteration
rows, completion events and logs all share the same string format so they
sort lexicographically.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- parse_timestamp(): Parse ISO 8601 string to datetime
- elapsed_ms(): Milliseconds between two perf_counter readings

Examples:
    >>> from visibility_scanner.utils.time import utc_timestamp, parse_timestamp
    >>> ts = utc_timestamp()
    >>> ts.endswith("Z")
    True
    >>> parse_timestamp("2025-11-02T08:30:45Z").year
    2025
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Returns:
        datetime: Current UTC time with tzinfo=timezone.utc

    Note:
        NEVER use datetime.now() without a timezone or datetime.utcnow().
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ, e.g. 2025-11-02T08:30:45Z

    Returns:
        str: ISO 8601 formatted timestamp in UTC
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse ISO 8601 timestamp string to timezone-aware datetime.

    Args:
        timestamp_str: ISO 8601 timestamp string ending with 'Z'

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If timestamp doesn't end with 'Z' or has invalid format

    Examples:
        >>> parse_timestamp('2025-11-02T08:30:45')
        Traceback (most recent call last):
        ...
        ValueError: Timestamp must end with 'Z' (UTC): 2025-11-02T08:30:45
    """
    if not timestamp_str.endswith("Z"):
        raise ValueError(f"Timestamp must end with 'Z' (UTC): {timestamp_str}")

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp format: {timestamp_str}") from e


def elapsed_ms(start: float, end: float) -> int:
    """
    Convert two time.perf_counter() readings into whole milliseconds.

    Args:
        start: Reading taken before the operation
        end: Reading taken after the operation

    Returns:
        Non-negative elapsed time in milliseconds
    """
    return max(0, int(round((end - start) * 1000)))
