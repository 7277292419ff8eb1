"""Input sanitization tests.

Covers provider value normalization and the query input guards used by the
listing endpoints. SQLAlchemy parameterizes every query; the guards here are
a second layer.
"""

import pytest

from licence_admin.utils.sanitization import (
    is_malformed_json_fragment,
    sanitize_external_record,
    sanitize_external_value,
)
from licence_admin.utils.validation import (
    escape_like_wildcards,
    sanitize_search,
    sanitize_status_list,
    validate_sort_by,
)

SQL_INJECTION_PAYLOADS = [
    "'; DROP TABLE licenses; --",
    "1' OR '1'='1",
    "1; DELETE FROM licenses WHERE '1'='1",
    "' UNION SELECT * FROM audit_events --",
    "1'; SELECT pg_sleep(5) --",
    "1'/**/OR/**/1=1--",
    "$$; DROP TABLE licenses; $$",
    "1'\x00 OR 1=1 --",
]


class TestExternalValueSanitization:
    """Empty and malformed provider values collapse to None."""

    @pytest.mark.parametrize(
        "value",
        [None, "", "   ", "null", "NULL", "undefined", [], {}, ()],
    )
    def test_empty_values_become_none(self, value) -> None:
        assert sanitize_external_value(value) is None

    @pytest.mark.parametrize(
        "value",
        [
            "Expecting value: line 1 column 1 (char 0)",
            "Unexpected token < in JSON at position 0",
            "Unterminated string starting at: line 1",
            "Extra data: line 1 column 5",
        ],
    )
    def test_parse_error_fragments_become_none(self, value: str) -> None:
        assert is_malformed_json_fragment(value) is True
        assert sanitize_external_value(value) is None

    def test_strings_are_stripped(self) -> None:
        assert sanitize_external_value("  Corner Cafe ") == "Corner Cafe"

    @pytest.mark.parametrize("value", [0, 1, 18.5, False, ["a"], {"k": "v"}])
    def test_data_values_kept(self, value) -> None:
        assert sanitize_external_value(value) == value

    def test_record_sanitized_per_field(self) -> None:
        record = sanitize_external_record(
            {"appid": " A1 ", "dba": "null", "package": {}, "status": 1}
        )
        assert record == {"appid": "A1", "dba": None, "package": None, "status": 1}


class TestQueryInputValidation:
    """Query parameters are sanitized or checked against whitelists."""

    @pytest.mark.parametrize("payload", SQL_INJECTION_PAYLOADS)
    def test_search_parameter_sanitized(self, payload: str) -> None:
        result = sanitize_search(payload)
        if result is not None:
            assert ";" not in result
            assert "--" not in result
            assert len(result) <= 200

    @pytest.mark.parametrize("payload", SQL_INJECTION_PAYLOADS)
    def test_sort_column_whitelist_rejects_injection(self, payload: str) -> None:
        allowed_columns = {"key", "created_at", "expires_at"}
        assert validate_sort_by(payload, allowed_columns, "created_at") == "created_at"

    @pytest.mark.parametrize("payload", SQL_INJECTION_PAYLOADS)
    def test_status_filter_whitelist_rejects_injection(self, payload: str) -> None:
        assert sanitize_status_list(payload, {"active", "expired"}) is None

    def test_status_list_from_comma_string(self) -> None:
        result = sanitize_status_list("Active, expired,active,bogus", {"active", "expired"})
        assert result == ["active", "expired"]

    def test_blank_search_is_none(self) -> None:
        assert sanitize_search("  ;; ") is None

    def test_like_wildcard_escaping(self) -> None:
        assert escape_like_wildcards("test%value") == r"test\%value"
        assert escape_like_wildcards("test_value") == r"test\_value"
        assert escape_like_wildcards("test\\value") == r"test\\value"
