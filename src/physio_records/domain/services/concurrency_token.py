"""Concurrency Token (weak ETag) encoding and comparison.

The remote store has no "update only if version X" primitive, so lost-update
protection is rebuilt client-side from the row's ``updated_at`` value:

1. read the current ``updated_at``
2. compare it against the tag the caller last saw
3. write only if they match

Tags are ``W/"<timestamp>"`` where the timestamp is UTC with a ``Z`` suffix
and either millisecond or microsecond precision (whichever is exact for the
value). PostgreSQL ``timestamptz`` has microsecond resolution, so the encoding
is lossless for every value the store can produce.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from physio_records.domain.ports import ErrorKind, Result

TAG_PREFIX = 'W/"'
TAG_SUFFIX = '"'

INVALID_TAG_CODE = "invalid_if_match"

_TIMESTAMP_PATTERN = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[T ](?P<hour>\d{2}):(?P<minute>\d{2}):(?P<second>\d{2})"
    r"(?:\.(?P<fraction>\d{1,9}))?"
    r"(?P<zone>Z|z|[+-]\d{2}(?::?\d{2})?)$"
)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parse a zone-explicit ISO-8601 timestamp without losing precision.

    Accepts the forms PostgREST emits (``+00:00``, ``+00``) as well as ``Z``.
    Fractional digits beyond microseconds are accepted only when they are
    zero, because anything else cannot be represented exactly.

    Parameters:
        text: Timestamp string

    Returns:
        Aware UTC datetime, or None when the text is not a valid timestamp
    """
    if not isinstance(text, str):
        return None

    match = _TIMESTAMP_PATTERN.match(text.strip())
    if match is None:
        return None

    fraction = match.group("fraction") or ""
    if len(fraction) > 6:
        if fraction[6:].strip("0"):
            return None
        fraction = fraction[:6]
    microsecond = int(fraction.ljust(6, "0")) if fraction else 0

    zone = match.group("zone")
    if zone in ("Z", "z"):
        offset = timedelta(0)
    else:
        sign = -1 if zone[0] == "-" else 1
        digits = zone[1:].replace(":", "")
        hours = int(digits[:2])
        minutes = int(digits[2:4]) if len(digits) > 2 else 0
        if hours > 23 or minutes > 59:
            return None
        offset = sign * timedelta(hours=hours, minutes=minutes)

    try:
        parsed = datetime.strptime(
            f"{match.group('date')}T{match.group('hour')}:{match.group('minute')}:{match.group('second')}",
            "%Y-%m-%dT%H:%M:%S"
        )
    except ValueError:
        return None

    return parsed.replace(microsecond=microsecond, tzinfo=timezone(offset)).astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as UTC ISO-8601 with a ``Z`` suffix.

    Whole-millisecond values use three fractional digits, everything else
    uses six.
    """
    value = to_utc(value)
    base = f"{value.year:04d}-{value:%m-%dT%H:%M:%S}"
    if value.microsecond % 1000 == 0:
        return f"{base}.{value.microsecond // 1000:03d}Z"
    return f"{base}.{value.microsecond:06d}Z"


def header_value(raw: Optional[str]) -> Optional[str]:
    """Extract the first tag from an ``If-Match`` header value.

    Parameters:
        raw: Header value, possibly a comma-separated list

    Returns:
        The first non-blank entry, trimmed, or None if there is none
    """
    if raw is None:
        return None
    for candidate in raw.split(","):
        candidate = candidate.strip()
        if candidate:
            return candidate
    return None


class ConcurrencyToken:
    """Weak version tag derived from a row's last-modified timestamp."""

    @staticmethod
    def format(timestamp: datetime) -> str:
        """Encode a timestamp as a weak tag.

        Parameters:
            timestamp: The row's ``updated_at`` value

        Returns:
            Tag of the form ``W/"2024-01-01T10:00:00.000Z"``
        """
        return f'{TAG_PREFIX}{format_timestamp(timestamp)}{TAG_SUFFIX}'

    @staticmethod
    def parse(tag: Optional[str]) -> Result[datetime]:
        """Decode a weak tag.

        Parameters:
            tag: Tag string as received from the caller

        Returns:
            Result containing the UTC timestamp, or INVALID_PRECONDITION when
            the tag has the wrong delimiters, is truncated or does not carry
            a zone-explicit timestamp
        """
        if not isinstance(tag, str):
            return Result.failure_result(INVALID_TAG_CODE, ErrorKind.INVALID_PRECONDITION)

        tag = tag.strip()
        if (
            len(tag) <= len(TAG_PREFIX) + len(TAG_SUFFIX)
            or not tag.startswith(TAG_PREFIX)
            or not tag.endswith(TAG_SUFFIX)
        ):
            return Result.failure_result(
                INVALID_TAG_CODE,
                ErrorKind.INVALID_PRECONDITION,
                {"reason": "delimiters"}
            )

        parsed = parse_timestamp(tag[len(TAG_PREFIX):-len(TAG_SUFFIX)])
        if parsed is None:
            return Result.failure_result(
                INVALID_TAG_CODE,
                ErrorKind.INVALID_PRECONDITION,
                {"reason": "timestamp"}
            )
        return Result.success_result(parsed)

    @staticmethod
    def matches(tag: Optional[str], timestamp: datetime) -> bool:
        """Check whether a tag refers to exactly this timestamp.

        Both sides are normalized to UTC; there is no tolerance window.
        An unparseable tag never matches.
        """
        parsed = ConcurrencyToken.parse(tag)
        if parsed.is_failure():
            return False
        return parsed.value == to_utc(timestamp)
