"""Tests for the named value validators."""

from datetime import date, datetime, timezone

import pytest

from emr_forms.models.form import DateRangeRule, EmailRule, FutureDateRule, GeorgianIdRule
from emr_forms.services.validators import (
    batch_validate,
    get_validation_errors,
    get_validator,
    is_all_valid,
    luhn_checksum_ok,
    validate_date_range,
    validate_email,
    validate_future_date,
    validate_georgian_personal_id,
    validate_phone,
    validate_url,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Georgian personal ID
# ---------------------------------------------------------------------------

def test_luhn_checksum():
    assert luhn_checksum_ok("79927398713")
    assert not luhn_checksum_ok("79927398710")


def test_personal_id_valid():
    assert validate_georgian_personal_id("79927398713").is_valid


def test_personal_id_wrong_length():
    result = validate_georgian_personal_id("1234")
    assert not result.is_valid
    assert result.error == "Personal ID must be exactly 11 digits"


def test_personal_id_non_digits():
    result = validate_georgian_personal_id("7992739871a")
    assert result.error == "Personal ID must contain only digits"


def test_personal_id_rejects_unicode_digits():
    """Arabic-Indic digits are digits to str.isdigit but not to the ID format."""
    result = validate_georgian_personal_id("٠١٢٣٤٥٦٧٨٩٠")
    assert result.error == "Personal ID must contain only digits"


def test_personal_id_bad_checksum():
    result = validate_georgian_personal_id("79927398710")
    assert result.error == "Invalid personal ID checksum"


def test_personal_id_ten_digits():
    assert validate_georgian_personal_id("1234567890").error == "Personal ID must be exactly 11 digits"


def test_personal_id_trailing_letter():
    assert validate_georgian_personal_id("2600101463A").error == "Personal ID must contain only digits"


def test_personal_id_accepts_numbers():
    assert validate_georgian_personal_id(79927398713).is_valid


# ---------------------------------------------------------------------------
# Email / phone / URL
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "value",
    ["user@example.com", "user+tag@domain.co.uk", "first.last+tag@mail.example.ge", "  a-b@c-d.org  "],
)
def test_email_valid(value):
    assert validate_email(value).is_valid


@pytest.mark.parametrize("value", ["user@", "userexample.com", "user @example.com", "@example.com", "a@b.c", "a@@b.com"])
def test_email_invalid(value):
    result = validate_email(value)
    assert not result.is_valid
    assert result.error == "Invalid email format"


def test_email_overlong_rejected():
    local = "a" * 64
    domain = ".".join(["b" * 60] * 4) + ".com"
    assert not validate_email(f"{local}@{domain}").is_valid
    assert not validate_email("a" * 5000 + "!").is_valid


def test_phone_e164():
    assert validate_phone("+995599123456").is_valid
    assert validate_phone(" +14155552671 ").is_valid


@pytest.mark.parametrize("value", ["995599123456", "+0123456", "+", "+1234567890123456", "+99559 912"])
def test_phone_invalid(value):
    result = validate_phone(value)
    assert result.error == "Invalid phone number format (use E.164 format: +995XXXXXXXXX)"


def test_url_valid():
    assert validate_url("https://example.com/path?q=1").is_valid
    assert validate_url("http://localhost:8080").is_valid


def test_url_wrong_protocol():
    assert validate_url("ftp://files.example.com").error == "URL must use HTTP or HTTPS protocol"


def test_url_unparseable():
    assert validate_url("not a url").error == "Invalid URL format"
    assert validate_url("https://").error == "Invalid URL format"


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def test_date_range_past_date_ok():
    assert validate_date_range("2000-01-01", now=NOW).is_valid


def test_date_range_today_ok():
    assert validate_date_range("2024-06-15", now=NOW).is_valid


def test_date_range_future_rejected():
    result = validate_date_range("2030-01-01", now=NOW)
    assert result.error == "Date cannot be in the future"


def test_date_range_future_allowed():
    assert validate_date_range("2030-01-01", allow_future=True, now=NOW).is_valid


def test_date_range_too_old():
    result = validate_date_range("1900-01-01", now=NOW)
    assert result.error == "Date cannot be more than 120 years ago"


@pytest.mark.parametrize(
    "value, is_valid",
    [("1904-06-14", False), ("1904-06-15", True), ("1904-06-16", True)],
)
def test_date_range_max_age_boundary(value, is_valid):
    assert validate_date_range(value, now=NOW).is_valid is is_valid


def test_date_range_custom_max_age():
    result = validate_date_range("2010-01-01", max_age_years=10, now=NOW)
    assert result.error == "Date cannot be more than 10 years ago"


def test_date_range_invalid_format():
    assert validate_date_range("15/06/2024", now=NOW).error == "Invalid date format"
    assert validate_date_range(None, now=NOW).error == "Invalid date format"


def test_date_range_accepts_datetime_strings():
    assert validate_date_range("2024-06-15T08:00:00Z", now=NOW).is_valid
    assert not validate_date_range("2024-06-15T18:00:00Z", now=NOW).is_valid


def test_date_range_accepts_date_objects():
    assert validate_date_range(date(1990, 5, 1), now=NOW).is_valid


def test_date_range_leap_day_reference():
    leap = datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert validate_date_range("2023-03-01", max_age_years=1, now=leap).is_valid


def test_future_date():
    assert validate_future_date("2024-06-15", now=NOW).is_valid
    assert validate_future_date("2025-01-01", now=NOW).is_valid
    assert validate_future_date("2024-06-14", now=NOW).error == "Date cannot be in the past"


# ---------------------------------------------------------------------------
# Registry and batch helpers
# ---------------------------------------------------------------------------

def test_get_validator_binds_rule_options():
    check = get_validator(DateRangeRule(max_age_years=5), clock=lambda: NOW)
    assert check("2015-01-01").error == "Date cannot be more than 5 years ago"
    assert check("2022-01-01").is_valid


def test_get_validator_future_date_uses_clock():
    check = get_validator(FutureDateRule(), clock=lambda: NOW)
    assert not check("2024-01-01").is_valid


def test_get_validator_simple_rules():
    assert get_validator(EmailRule())("a@b.co").is_valid
    assert not get_validator(GeorgianIdRule())("123").is_valid


def test_batch_validate_and_helpers():
    validators = {
        "email": get_validator(EmailRule()),
        "pid": get_validator(GeorgianIdRule()),
    }
    results = batch_validate(
        {"email": "bad", "pid": "79927398713", "unvalidated": "x"}, validators
    )
    assert set(results) == {"email", "pid"}
    assert not is_all_valid(results)
    assert get_validation_errors(results) == ["Invalid email format"]


def test_result_to_dict():
    assert validate_email("bad").to_dict() == {"isValid": False, "error": "Invalid email format"}
    assert validate_email("a@b.co").to_dict() == {"isValid": True}
