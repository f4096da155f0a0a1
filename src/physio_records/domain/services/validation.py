"""Input normalization for patient, visit and profile fields.

Every normalizer returns a Result so that validation failures are reported
as ``INVALID_ARGUMENT`` before any remote call is issued.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from physio_records.domain.ports import Result, invalid_argument
from physio_records.domain.services.concurrency_token import format_timestamp, to_utc

NAME_MAX_LENGTH = 100
SEARCH_MAX_LENGTH = 100
VISIT_TEXT_MAX_LENGTH = 10000
VISIT_DATE_LOOKAHEAD_DAYS = 30

VISIT_CONTENT_FIELDS = ("interview", "description", "recommendations")

_WHITESPACE = re.compile(r"\s+")
_INLINE_WHITESPACE = re.compile(r"[ \t\f\v]{2,}")


def _is_allowed_name(value: str) -> bool:
    # Letters (any script), hyphens and single spaces only.
    return all(ch.isalpha() or ch in "- " for ch in value)


def normalize_name(value: Optional[str], field: str) -> Result[str]:
    """Trim, collapse whitespace and validate a person name.

    Parameters:
        value: Raw name
        field: Field name used in error codes (e.g. "first_name")

    Returns:
        Result containing the normalized name
    """
    if value is None or not value.strip():
        return invalid_argument(f"{field}_required", field=field)

    normalized = _WHITESPACE.sub(" ", value.strip())
    if len(normalized) > NAME_MAX_LENGTH:
        return invalid_argument(f"{field}_too_long", field=field)
    if not _is_allowed_name(normalized):
        return invalid_argument(f"{field}_invalid", field=field)
    return Result.success_result(normalized)


def normalize_date_of_birth(value: Optional[date], today: date) -> Result[Optional[str]]:
    """Validate an optional date of birth; future dates are rejected."""
    if value is None:
        return Result.success_result(None)
    if isinstance(value, datetime):
        value = value.date()
    if value > today:
        return invalid_argument("date_of_birth_future", field="date_of_birth")
    return Result.success_result(value.isoformat())


def normalize_visit_date(
    value: Optional[datetime],
    now: datetime,
    lookahead_days: int = VISIT_DATE_LOOKAHEAD_DAYS
) -> Result[str]:
    """Validate a visit date, defaulting to ``now``.

    Dates more than ``lookahead_days`` in the future are rejected.
    """
    if value is None:
        value = now
    value = to_utc(value)
    if value > to_utc(now) + timedelta(days=lookahead_days):
        return invalid_argument("visit_date_future", field="visit_date")
    return Result.success_result(format_timestamp(value))


def normalize_visit_text(
    value: Optional[str],
    field: str,
    max_length: int = VISIT_TEXT_MAX_LENGTH
) -> Result[Optional[str]]:
    """Normalize free-text visit content.

    Runs of inline whitespace collapse to a single space; line breaks are kept.
    Blank input becomes None.
    """
    if value is None:
        return Result.success_result(None)

    normalized = _INLINE_WHITESPACE.sub(" ", value.strip())
    if not normalized:
        return Result.success_result(None)
    if len(normalized) > max_length:
        return invalid_argument(f"{field}_too_long", field=field)
    return Result.success_result(normalized)


def normalize_search(value: Optional[str], max_length: int = SEARCH_MAX_LENGTH) -> Result[Optional[str]]:
    """Trim and collapse a search term; blank input becomes None."""
    if value is None:
        return Result.success_result(None)

    normalized = _WHITESPACE.sub(" ", value.strip())
    if not normalized:
        return Result.success_result(None)
    if len(normalized) > max_length:
        return invalid_argument("search_too_long", field="search")
    return Result.success_result(normalized)


def require_any_visit_content(row: Mapping[str, Any]) -> Result[None]:
    """Require at least one of interview, description or recommendations."""
    if any(row.get(field) for field in VISIT_CONTENT_FIELDS):
        return Result.success_result(None)
    return invalid_argument("visit_content_required")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
