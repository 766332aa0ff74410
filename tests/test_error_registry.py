"""
Tests for the error registry and the SubSyncError exception.
"""

import pytest
import yaml

from app.core.errors import SubSyncError
import logging

from app.core.errors.registry import DEFAULT_PATH, ErrorRegistry, RegistryValidationError, error_registry


EXPECTED_HTTP_STATUS = {
    "SUB-API-001": 400,
    "SUB-API-002": 403,
    "SUB-API-003": 429,
    "SUB-SEC-001": 401,
    "SUB-SEC-002": 500,
    "SUB-DB-001": 500,
    "SUB-DB-002": 500,
    "SUB-BIL-001": 500,
    "SUB-CFG-001": 500,
    "SUB-SYS-001": 500,
}


class TestSubSyncError:
    def test_code_and_domain(self):
        err = SubSyncError("SUB-BIL-001", detail="timeout", context={"user_id": "u"})
        assert err.code == "SUB-BIL-001"
        assert err.domain == "BIL"
        assert err.context == {"user_id": "u"}
        assert str(err) == "SUB-BIL-001: timeout"

    def test_context_defaults_to_fresh_dict(self):
        a, b = SubSyncError("SUB-DB-001"), SubSyncError("SUB-DB-001")
        a.context["x"] = 1
        assert b.context == {}

    @pytest.mark.parametrize("code", ["BIL-001", "SUB-BIL-1", "sub-bil-001", "SUB-B-001"])
    def test_invalid_code_rejected(self, code):
        with pytest.raises(ValueError):
            SubSyncError(code)


class TestShippedRegistry:
    @pytest.fixture
    def raw_codes(self):
        with open(DEFAULT_PATH) as f:
            return [item["code"] for item in yaml.safe_load(f)["errors"]]

    def test_exactly_the_expected_codes(self, raw_codes):
        assert sorted(raw_codes) == sorted(EXPECTED_HTTP_STATUS)

    @pytest.mark.parametrize("code,status", sorted(EXPECTED_HTTP_STATUS.items()))
    def test_http_status(self, code, status):
        assert error_registry.get(code).http_status == status

    @pytest.mark.parametrize("code", sorted(EXPECTED_HTTP_STATUS))
    def test_server_errors_use_generic_message(self, code):
        entry = error_registry.get(code)
        if entry.http_status >= 500:
            assert entry.safe_message == "An internal error occurred."

    def test_unknown_code(self):
        assert error_registry.get("SUB-SYS-999") is None

    def test_log_levels(self):
        assert error_registry.get("SUB-API-002").log_level == logging.WARNING
        assert error_registry.get("SUB-CFG-001").log_level == logging.CRITICAL
        assert error_registry.get("SUB-DB-001").log_level == logging.ERROR


class TestRegistryValidation:
    def _entry(self, **overrides):
        entry = {
            "code": "SUB-API-001",
            "domain": "API",
            "title": "t",
            "severity": "INFO",
            "retryable": False,
            "user_action_required": False,
            "http_status": 400,
            "safe_message": "m",
            "remediation": [],
        }
        entry.update(overrides)
        return entry

    def _load(self, tmp_path, entries):
        path = tmp_path / "registry.yaml"
        path.write_text(yaml.safe_dump({"schema_version": 1, "errors": entries}))
        registry = ErrorRegistry()
        registry.load(str(path))
        return registry

    def test_valid(self, tmp_path):
        registry = self._load(tmp_path, [self._entry()])
        assert registry.get("SUB-API-001").http_status == 400

    def test_missing_field(self, tmp_path):
        entry = self._entry()
        del entry["http_status"]
        with pytest.raises(RegistryValidationError, match="missing fields"):
            self._load(tmp_path, [entry])

    def test_domain_mismatch(self, tmp_path):
        with pytest.raises(RegistryValidationError, match="does not match"):
            self._load(tmp_path, [self._entry(domain="DB")])

    def test_unknown_domain(self, tmp_path):
        with pytest.raises(RegistryValidationError, match="unknown domain"):
            self._load(tmp_path, [self._entry(code="SUB-XYZ-001", domain="XYZ")])

    def test_non_error_status(self, tmp_path):
        with pytest.raises(RegistryValidationError, match="not an error status"):
            self._load(tmp_path, [self._entry(http_status=200)])

    def test_duplicate(self, tmp_path):
        with pytest.raises(RegistryValidationError, match="Duplicate"):
            self._load(tmp_path, [self._entry(), self._entry()])

    def test_errors_must_be_a_list(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text("errors: {}\n")
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(str(path))
