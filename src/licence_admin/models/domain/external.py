"""Provider records and the reconciliation merge policy.

Everything here is pure: parsing a raw provider record, deciding which
fields of an internal license it may overwrite, and shaping a new license
for a record that matched nothing.
"""

import hashlib
import json
import re
import secrets
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from licence_admin.exceptions import ExternalSyncError
from licence_admin.models.domain.license import License, LicenseStatus
from licence_admin.models.domain.validation import (
    LenientDefaults,
    coerce_datetime,
    coerce_decimal,
)
from licence_admin.utils.sanitization import sanitize_external_record

PROVIDER_STATUS_ACTIVE = 1
MAX_KEY_LENGTH = 100

# Provider values that always win when present
LINKAGE_FIELDS = (
    "appid",
    "countid",
    "mid",
    "license_type",
    "package_data",
    "sendbat_workspace",
    "coming_expired",
)

# Internal values that are filled from the provider only when absent
DESCRIPTIVE_FIELDS = ("dba", "zip", "notes", "email")


class MatchedOn(StrEnum):
    """Identifier that linked a provider record to an internal license."""

    APPID = "appid"
    COUNTID = "countid"
    EMAIL = "email"


def payload_hash(payload: Any) -> str:
    """Stable hash of a provider payload, used to skip unchanged records."""
    encoded = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _identifier(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ExternalLicenseRecord(BaseModel):
    """A sanitized provider record."""

    external_id: str
    appid: str | None = None
    countid: str | None = None
    email: str | None = None
    license_type: str | None = None
    dba: str | None = None
    zip: str | None = None
    mid: str | None = None
    status: int | None = None
    activate_date: datetime | None = None
    coming_expired: str | None = None
    monthly_fee: Decimal | None = None
    sms_balance: Decimal | None = None
    package_data: dict[str, Any] | None = None
    note: str | None = None
    sendbat_workspace: str | None = None
    last_active: datetime | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    payload_hash: str
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == PROVIDER_STATUS_ACTIVE

    @property
    def identifiers(self) -> dict[str, str]:
        return {
            name: value
            for name, value in (
                ("appid", self.appid),
                ("countid", self.countid),
                ("email", self.email),
            )
            if value
        }

    @classmethod
    def from_provider(cls, raw: Any) -> "ExternalLicenseRecord":
        """Sanitize and parse a raw provider record.

        Unparseable optional values are dropped with a warning; only records
        that cannot be identified at all are rejected.

        Raises:
            ExternalSyncError: If the record is not an object or carries no
                stable identifier
        """
        if not isinstance(raw, Mapping):
            raise ExternalSyncError(
                "Provider record is not an object", {"type": type(raw).__name__}
            )

        clean = sanitize_external_record(raw)
        warnings: list[str] = []

        def as_datetime(name: str) -> datetime | None:
            try:
                return coerce_datetime(clean.get(name))
            except (TypeError, ValueError):
                warnings.append(f"{name} ignored: not a date")
                return None

        def as_decimal(name: str) -> Decimal | None:
            try:
                return coerce_decimal(clean.get(name))
            except ValueError:
                warnings.append(f"{name} ignored: not a number")
                return None

        status: int | None = None
        if clean.get("status") is not None:
            try:
                status = int(clean["status"])
            except (TypeError, ValueError):
                warnings.append("status ignored: not an integer")

        package = clean.get("package")
        if package is not None and not isinstance(package, Mapping):
            package = {"items": package} if isinstance(package, list) else {"name": str(package)}

        appid = _identifier(clean.get("appid"))
        countid = _identifier(clean.get("countid"))
        email = _identifier(clean.get("emailLicense"))
        provider_id = _identifier(clean.get("id"))

        if provider_id:
            external_id = provider_id
        elif appid:
            external_id = f"appid:{appid}"
        elif countid:
            external_id = f"countid:{countid}"
        elif email:
            external_id = f"email:{email.lower()}"
        else:
            raise ExternalSyncError(
                "Provider record has no stable identifier",
                {"fields": sorted(str(k) for k in raw.keys())[:20]},
            )

        coming_expired = clean.get("comingExpired")
        json_payload = json.loads(json.dumps(dict(raw), default=str))

        return cls(
            external_id=external_id,
            appid=appid,
            countid=countid,
            email=email,
            license_type=_identifier(clean.get("licenseType")),
            dba=_identifier(clean.get("dba")),
            zip=_identifier(clean.get("zip")),
            mid=_identifier(clean.get("mid")),
            status=status,
            activate_date=as_datetime("activateDate"),
            coming_expired=str(coming_expired) if coming_expired is not None else None,
            monthly_fee=as_decimal("monthlyFee"),
            sms_balance=as_decimal("smsBalance"),
            package_data=dict(package) if package is not None else None,
            note=_identifier(clean.get("note")),
            sendbat_workspace=_identifier(clean.get("sendbatWorkspace")),
            last_active=as_datetime("lastActive"),
            payload=json_payload,
            payload_hash=payload_hash(json_payload),
            warnings=warnings,
        )


def generate_external_key(record: ExternalLicenseRecord, now: datetime) -> str:
    """Build a unique key for a license created from a provider record."""
    parts = [
        re.sub(r"[^A-Za-z0-9]+", "", value)
        for value in (record.appid, record.countid, record.email)
        if value
    ]
    timestamp = int(now.timestamp() * 1000)
    key = "-".join(["EXT", *[p for p in parts if p], str(timestamp), secrets.token_hex(3)])
    return key[:MAX_KEY_LENGTH]


def build_new_license_data(
    record: ExternalLicenseRecord,
    key: str,
    now: datetime,
    defaults: LenientDefaults,
) -> dict[str, Any]:
    """Attributes of a license created for an unmatched provider record.

    The result is meant for lenient validation, which fills missing mandatory
    fields with ``defaults``. A record without a status flag starts as
    pending.
    """
    status = provider_target_status(record) or LicenseStatus.PENDING
    return {
        "key": key,
        "product": defaults.product,
        "plan": defaults.plan,
        "term": defaults.term,
        "seats_total": defaults.seats_total,
        "seats_used": 0,
        "dba": record.dba or record.email or defaults.dba,
        "zip": record.zip,
        "email": record.email,
        "notes": record.note,
        "status": status,
        "starts_at": record.activate_date or now,
        "cancel_date": (record.last_active or now) if status == LicenseStatus.CANCEL else None,
        "last_active": record.last_active,
        "last_payment": record.monthly_fee,
        "sms_balance": record.sms_balance or Decimal("0"),
        "appid": record.appid,
        "countid": record.countid,
        "mid": record.mid,
        "license_type": record.license_type,
        "package_data": record.package_data,
        "sendbat_workspace": record.sendbat_workspace,
        "coming_expired": record.coming_expired,
    }


def _is_zero(value: Decimal | None) -> bool:
    return value is None or value == 0


def build_merge_changes(
    license: License,
    record: ExternalLicenseRecord,
    today: date,
    defaults: LenientDefaults,
) -> dict[str, Any]:
    """Field changes a provider record may apply to an existing license.

    Rules per field kind:
        - linkage fields take the provider value whenever it is present
        - the activation date overwrites ``starts_at`` only when that is
          absent or equal to ``today`` (a stale default)
        - balances overwrite only when the internal value is zero and the
          provider's is not
        - descriptive fields fill only absent or fallback values
        - ``last_active`` moves forward only

    Only values that differ from the license are returned, so an unchanged
    record yields an empty dict.
    """
    changes: dict[str, Any] = {}

    for name in LINKAGE_FIELDS:
        value = getattr(record, name)
        if value is not None and getattr(license, name) != value:
            changes[name] = value

    if record.activate_date is not None:
        starts_at = license.starts_at
        stale = starts_at is None or starts_at.date() == today
        keeps_order = license.expires_at is None or record.activate_date < license.expires_at
        if stale and keeps_order and starts_at != record.activate_date:
            changes["starts_at"] = record.activate_date

    if not _is_zero(record.sms_balance) and _is_zero(license.sms_balance):
        changes["sms_balance"] = record.sms_balance
    if not _is_zero(record.monthly_fee) and _is_zero(license.last_payment):
        changes["last_payment"] = record.monthly_fee

    fallbacks = {"dba": defaults.dba}
    provider_values = {
        "dba": record.dba or record.email,
        "zip": record.zip,
        "notes": record.note,
        "email": record.email,
    }
    for name in DESCRIPTIVE_FIELDS:
        value = provider_values[name]
        current = getattr(license, name)
        if value is None or current == value:
            continue
        if current is None or current == fallbacks.get(name):
            changes[name] = value

    if record.last_active is not None and (
        license.last_active is None or record.last_active > license.last_active
    ):
        changes["last_active"] = record.last_active

    return changes


def provider_target_status(record: ExternalLicenseRecord) -> LicenseStatus | None:
    """Internal status implied by the provider's status flag."""
    if record.status is None:
        return None
    return LicenseStatus.ACTIVE if record.is_active else LicenseStatus.CANCEL
