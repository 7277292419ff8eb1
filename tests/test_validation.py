"""License validation tests."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from licence_admin.models.domain.license import LicenseStatus, LicenseTerm
from licence_admin.models.domain.validation import (
    LenientDefaults,
    coerce_datetime,
    coerce_decimal,
    validate_license_data,
)


def _data(**overrides):
    data = {
        "key": "LIC-100",
        "product": "Business Suite",
        "plan": "Pro",
        "dba": "Corner Cafe",
        "starts_at": "2026-01-01T00:00:00Z",
        "expires_at": "2027-01-01T00:00:00Z",
    }
    data.update(overrides)
    return data


class TestStrictValidation:
    """Manual-entry validation."""

    def test_valid_data(self) -> None:
        result = validate_license_data(_data())
        assert result.is_valid
        license = result.license
        assert license.starts_at == datetime(2026, 1, 1, tzinfo=UTC)
        assert license.term == LicenseTerm.MONTHLY
        assert license.grace_period_days == 30
        assert license.renewal_due_date == license.expires_at

    def test_missing_required_fields(self) -> None:
        result = validate_license_data({"key": "LIC-1"})
        assert not result.is_valid
        assert "product is required" in result.errors
        assert "plan is required" in result.errors
        assert "dba is required" in result.errors
        assert "starts_at is required" in result.errors

    def test_blank_string_counts_as_missing(self) -> None:
        result = validate_license_data(_data(dba="   "))
        assert "dba is required" in result.errors

    def test_reversed_dates_are_swapped(self) -> None:
        result = validate_license_data(
            _data(starts_at="2026-06-01T00:00:00Z", expires_at="2026-01-01T00:00:00Z")
        )
        assert result.is_valid
        assert result.license.starts_at == datetime(2026, 1, 1, tzinfo=UTC)
        assert result.license.expires_at == datetime(2026, 6, 1, tzinfo=UTC)
        assert "starts_at and expires_at swapped" in result.corrections

    def test_equal_dates_rejected(self) -> None:
        result = validate_license_data(
            _data(starts_at="2026-01-01T00:00:00Z", expires_at="2026-01-01T00:00:00Z")
        )
        assert "expires_at must be after starts_at" in result.errors

    def test_invalid_date_rejected(self) -> None:
        result = validate_license_data(_data(expires_at="next tuesday"))
        assert "expires_at must be a valid date" in result.errors

    def test_unknown_status_rejected(self) -> None:
        result = validate_license_data(_data(status="paused"))
        assert not result.is_valid
        assert result.errors[0].startswith("status must be one of")

    @pytest.mark.parametrize(
        ("seats_total", "seats_used", "message"),
        [
            (0, 0, "seats_total must be at least 1"),
            (2, -1, "seats_used must be zero or greater"),
            (2, 3, "seats_used cannot exceed seats_total"),
        ],
    )
    def test_seat_bounds(self, seats_total: int, seats_used: int, message: str) -> None:
        result = validate_license_data(_data(seats_total=seats_total, seats_used=seats_used))
        assert message in result.errors

    def test_negative_grace_period_rejected(self) -> None:
        result = validate_license_data(_data(grace_period_days=-1))
        assert "grace_period_days must be zero or greater" in result.errors

    def test_grace_period_end_derived(self) -> None:
        result = validate_license_data(_data(grace_period_days=10))
        assert result.license.grace_period_end == datetime(2027, 1, 11, tzinfo=UTC)


class TestLenientValidation:
    """Provider-record validation with fallbacks."""

    def test_missing_fields_get_fallbacks(self) -> None:
        result = validate_license_data({"key": "EXT-1"}, lenient=True)
        assert result.is_valid
        license = result.license
        assert license.dba == "External License"
        assert license.product == "Business Suite"
        assert license.plan == "Basic"
        assert license.seats_total == 1
        assert license.starts_at is None
        assert "dba defaulted to 'External License'" in result.corrections

    def test_custom_defaults(self) -> None:
        defaults = LenientDefaults(dba="Imported", product="Suite", plan="Starter")
        result = validate_license_data({"key": "EXT-2"}, lenient=True, defaults=defaults)
        assert result.license.dba == "Imported"
        assert result.license.plan == "Starter"

    def test_unparseable_date_dropped(self) -> None:
        result = validate_license_data(
            {"key": "EXT-3", "starts_at": "Expecting value", "status": LicenseStatus.ACTIVE},
            lenient=True,
        )
        assert result.is_valid
        assert result.license.starts_at is None
        assert "starts_at dropped: unparseable value" in result.corrections

    def test_key_still_required(self) -> None:
        result = validate_license_data({}, lenient=True)
        assert "key is required" in result.errors


class TestCoercion:
    """Date and number coercion."""

    def test_naive_datetime_becomes_utc(self) -> None:
        assert coerce_datetime(datetime(2026, 1, 1, 12)) == datetime(2026, 1, 1, 12, tzinfo=UTC)

    def test_date_becomes_midnight_utc(self) -> None:
        assert coerce_datetime(date(2026, 1, 1)) == datetime(2026, 1, 1, tzinfo=UTC)

    def test_z_suffix_parsed(self) -> None:
        assert coerce_datetime("2026-01-01T08:30:00Z") == datetime(2026, 1, 1, 8, 30, tzinfo=UTC)

    def test_blank_string_is_none(self) -> None:
        assert coerce_datetime("  ") is None

    def test_invalid_date_raises(self) -> None:
        with pytest.raises(ValueError):
            coerce_datetime("soon")

    def test_decimal_from_string(self) -> None:
        assert coerce_decimal(" 18.5 ") == Decimal("18.5")

    def test_decimal_rejects_text_and_bool(self) -> None:
        with pytest.raises(ValueError):
            coerce_decimal("abc")
        with pytest.raises(ValueError):
            coerce_decimal(True)
