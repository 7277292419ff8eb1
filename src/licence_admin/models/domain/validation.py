"""Pure license validation.

``validate_license_data`` never raises for bad input: it returns either a
valid ``License`` or the list of problems found. Manual entry uses the strict
mode; reconciliation uses the lenient mode, which substitutes fallbacks for
missing mandatory fields instead of failing.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from licence_admin.models.domain.license import (
    DEFAULT_GRACE_PERIOD_DAYS,
    License,
    LicenseStatus,
    LicenseTerm,
    derive_grace_period_end,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("key", "product", "plan", "dba", "starts_at")
DATE_FIELDS = (
    "starts_at",
    "expires_at",
    "cancel_date",
    "last_active",
    "last_renewal_reminder",
    "suspended_at",
    "reactivated_at",
)


@dataclass(frozen=True)
class LenientDefaults:
    """Fallbacks for mandatory fields missing from provider records."""

    dba: str = "External License"
    product: str = "Business Suite"
    plan: str = "Basic"
    term: LicenseTerm = LicenseTerm.MONTHLY
    seats_total: int = 1


@dataclass
class ValidationResult:
    """Either a valid license or the errors that prevented building one."""

    license: License | None = None
    errors: list[str] = field(default_factory=list)
    corrections: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.license is not None and not self.errors


def coerce_datetime(value: Any) -> datetime | None:
    """Convert a datetime, date or ISO-8601 string to an aware UTC datetime.

    Raises:
        ValueError: If the value cannot be interpreted as a date
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return coerce_datetime(parsed)
    raise ValueError(f"Unsupported date value: {type(value).__name__}")


def coerce_decimal(value: Any) -> Decimal | None:
    """Convert a number or numeric string to Decimal.

    Raises:
        ValueError: If the value is not numeric
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("Boolean is not a number")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid number: {value!r}") from e


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_license_data(
    data: Mapping[str, Any],
    *,
    lenient: bool = False,
    defaults: LenientDefaults | None = None,
) -> ValidationResult:
    """Validate raw license attributes.

    Args:
        data: Attribute mapping (snake_case keys)
        lenient: Substitute fallbacks for missing mandatory fields and drop
            unparseable dates instead of failing
        defaults: Fallback values used in lenient mode

    Returns:
        ValidationResult holding the license or the errors
    """
    defaults = defaults or LenientDefaults()
    values = dict(data)
    errors: list[str] = []
    corrections: list[str] = []

    if lenient:
        for name in ("dba", "product", "plan"):
            if _is_blank(values.get(name)):
                values[name] = getattr(defaults, name)
                corrections.append(f"{name} defaulted to {values[name]!r}")
        if _is_blank(values.get("term")):
            values["term"] = defaults.term
        if values.get("seats_total") is None:
            values["seats_total"] = defaults.seats_total
        if values.get("seats_used") is None:
            values["seats_used"] = 0

    for name in REQUIRED_FIELDS:
        if _is_blank(values.get(name)):
            if lenient and name == "starts_at":
                continue
            errors.append(f"{name} is required")

    for name in DATE_FIELDS:
        if name not in values:
            continue
        try:
            values[name] = coerce_datetime(values[name])
        except (TypeError, ValueError):
            if lenient:
                corrections.append(f"{name} dropped: unparseable value")
                values[name] = None
            else:
                errors.append(f"{name} must be a valid date")

    status = values.get("status")
    if status is not None and status not in LicenseStatus._value2member_map_:
        errors.append(
            f"status must be one of: {', '.join(s.value for s in LicenseStatus)}"
        )

    term = values.get("term")
    if term is not None and term not in LicenseTerm._value2member_map_:
        errors.append("term must be one of: monthly, yearly")

    seats_total = values.get("seats_total", 1)
    seats_used = values.get("seats_used", 0)
    if not isinstance(seats_total, int) or isinstance(seats_total, bool) or seats_total < 1:
        errors.append("seats_total must be at least 1")
    if not isinstance(seats_used, int) or isinstance(seats_used, bool) or seats_used < 0:
        errors.append("seats_used must be zero or greater")
    elif isinstance(seats_total, int) and seats_used > seats_total:
        errors.append("seats_used cannot exceed seats_total")

    grace = values.get("grace_period_days")
    if grace is not None and (not isinstance(grace, int) or grace < 0):
        errors.append("grace_period_days must be zero or greater")

    starts_at = values.get("starts_at")
    expires_at = values.get("expires_at")
    if isinstance(starts_at, datetime) and isinstance(expires_at, datetime):
        if expires_at < starts_at:
            values["starts_at"], values["expires_at"] = expires_at, starts_at
            corrections.append("starts_at and expires_at swapped")
            logger.debug(
                f"Swapped reversed dates for license {values.get('key')}: "
                f"starts_at={expires_at.isoformat()} expires_at={starts_at.isoformat()}"
            )
        elif expires_at == starts_at:
            errors.append("expires_at must be after starts_at")

    if errors:
        return ValidationResult(errors=errors, corrections=corrections)

    if values.get("grace_period_days") is None:
        values["grace_period_days"] = DEFAULT_GRACE_PERIOD_DAYS
    values["grace_period_end"] = derive_grace_period_end(
        values.get("expires_at"), values["grace_period_days"]
    )
    values["renewal_due_date"] = values.get("expires_at")

    try:
        license = License.model_validate(values)
    except PydanticValidationError as e:
        return ValidationResult(
            errors=[
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ],
            corrections=corrections,
        )

    return ValidationResult(license=license, corrections=corrections)
