"""
Named value validators used by form fields.

Every validator is a pure function ``(value, ...) -> ValidatorResult``.
Date validators take an optional ``now`` so results are reproducible; when
omitted the current UTC time is used.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel

EMAIL_PATTERN = re.compile(
    r"[a-zA-Z0-9]([a-zA-Z0-9._+-]*[a-zA-Z0-9])?"
    r"@[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*"
    r"\.[a-zA-Z]{2,}"
)
# RFC 5321 path limit; also bounds the pattern's backtracking on long input.
EMAIL_MAX_LENGTH = 254
E164_PATTERN = re.compile(r"\+[1-9][0-9]{1,14}")
PERSONAL_ID_LENGTH = 11
DEFAULT_MAX_AGE_YEARS = 120

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class ValidatorResult:
    is_valid: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"isValid": self.is_valid}
        if self.error:
            data["error"] = self.error
        return data


VALID = ValidatorResult(is_valid=True)


def _invalid(message: str) -> ValidatorResult:
    return ValidatorResult(is_valid=False, error=message)


# ---------------------------------------------------------------------------
# Identity and contact formats
# ---------------------------------------------------------------------------

def luhn_checksum_ok(digits: str) -> bool:
    """Mod-10 check: double every second digit counting from the right."""
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def validate_georgian_personal_id(value: Any) -> ValidatorResult:
    """
    Georgian personal ID: 11 ASCII digits with a Luhn check digit.

    The checksum is a placeholder rule; it has not been verified against the
    national registry algorithm.
    """
    text = str(value)
    if len(text) != PERSONAL_ID_LENGTH:
        return _invalid("Personal ID must be exactly 11 digits")
    if not (text.isascii() and text.isdigit()):
        return _invalid("Personal ID must contain only digits")
    if not luhn_checksum_ok(text):
        return _invalid("Invalid personal ID checksum")
    return VALID


def validate_email(value: Any) -> ValidatorResult:
    text = str(value).strip()
    if len(text) > EMAIL_MAX_LENGTH or not EMAIL_PATTERN.fullmatch(text):
        return _invalid("Invalid email format")
    return VALID


def validate_phone(value: Any) -> ValidatorResult:
    if not E164_PATTERN.fullmatch(str(value).strip()):
        return _invalid("Invalid phone number format (use E.164 format: +995XXXXXXXXX)")
    return VALID


def validate_url(value: Any) -> ValidatorResult:
    try:
        parts = urlsplit(str(value).strip())
    except ValueError:
        return _invalid("Invalid URL format")
    if not parts.scheme:
        return _invalid("Invalid URL format")
    if parts.scheme.lower() not in ("http", "https"):
        return _invalid("URL must use HTTP or HTTPS protocol")
    if not parts.netloc or not parts.hostname:
        return _invalid("Invalid URL format")
    return VALID


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def parse_temporal(value: Any) -> date | datetime | None:
    """Parse an ISO date or date-time; None when the value is not a date."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        return date.fromisoformat(text)
    except ValueError:
        return None


def _years_before(moment, years: int):
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        if moment.year - years < 1:
            if isinstance(moment, datetime):
                return datetime.min.replace(tzinfo=moment.tzinfo)
            return date.min
        # 29 February in a non-leap target year
        return moment.replace(year=moment.year - years, day=28)


def _reference_pair(parsed, now: Optional[datetime]):
    now = now or datetime.now(timezone.utc)
    if isinstance(parsed, datetime):
        if parsed.tzinfo is None and now.tzinfo is not None:
            parsed = parsed.replace(tzinfo=now.tzinfo)
        elif parsed.tzinfo is not None and now.tzinfo is None:
            now = now.replace(tzinfo=parsed.tzinfo)
        return parsed, now
    return parsed, now.date()


def validate_date_range(
    value: Any,
    allow_future: bool = False,
    max_age_years: int = DEFAULT_MAX_AGE_YEARS,
    now: Optional[datetime] = None,
) -> ValidatorResult:
    parsed = parse_temporal(value)
    if parsed is None:
        return _invalid("Invalid date format")
    parsed, reference = _reference_pair(parsed, now)
    if not allow_future and parsed > reference:
        return _invalid("Date cannot be in the future")
    if parsed < _years_before(reference, max_age_years):
        return _invalid(f"Date cannot be more than {max_age_years} years ago")
    return VALID


def validate_future_date(value: Any, now: Optional[datetime] = None) -> ValidatorResult:
    parsed = parse_temporal(value)
    if parsed is None:
        return _invalid("Invalid date format")
    parsed, reference = _reference_pair(parsed, now)
    if parsed < reference:
        return _invalid("Date cannot be in the past")
    return VALID


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

VALIDATORS: dict[str, Callable[..., ValidatorResult]] = {
    "georgian-id": validate_georgian_personal_id,
    "email": validate_email,
    "phone": validate_phone,
    "url": validate_url,
    "past-date": validate_date_range,
    "date-range": validate_date_range,
    "future-date": validate_future_date,
}


def get_validator(
    rule: BaseModel, clock: Optional[Clock] = None
) -> Callable[[Any], ValidatorResult]:
    """Bind a parsed custom validator rule to a single-argument callable."""
    name = rule.name
    if name in ("past-date", "date-range"):
        def check_range(value: Any) -> ValidatorResult:
            return validate_date_range(
                value,
                allow_future=rule.allow_future,
                max_age_years=rule.max_age_years,
                now=clock() if clock else None,
            )
        return check_range
    if name == "future-date":
        return lambda value: validate_future_date(value, now=clock() if clock else None)
    try:
        return VALIDATORS[name]
    except KeyError:
        raise ValueError(f"No validator registered for rule '{name}'") from None


def batch_validate(
    values: dict[str, Any],
    validators: dict[str, Callable[[Any], ValidatorResult]],
) -> dict[str, ValidatorResult]:
    """Run each field's validator on its value; fields without one are skipped."""
    return {
        field_id: validators[field_id](value)
        for field_id, value in values.items()
        if field_id in validators
    }


def is_all_valid(results: dict[str, ValidatorResult]) -> bool:
    return all(result.is_valid for result in results.values())


def get_validation_errors(results: dict[str, ValidatorResult]) -> list[str]:
    return [
        result.error or "Unknown error"
        for result in results.values()
        if not result.is_valid
    ]
