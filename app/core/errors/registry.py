"""
Error registry for SUB-* codes.

``registry.yaml`` (next to this module) is the single source of each code's
HTTP status, severity and user-safe message. It is parsed once at startup;
a malformed file fails startup rather than surfacing as a broken 500 later.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

import yaml

from app.core.errors import CODE_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_PATH = os.path.join(os.path.dirname(__file__), "registry.yaml")

VALID_DOMAINS = frozenset({"API", "CFG", "DB", "BIL", "SEC", "SYS"})
SEVERITIES = ("DEBUG", "INFO", "WARN", "ERROR", "CRITICAL")
REQUIRED_FIELDS = (
    "code", "domain", "title", "severity", "retryable",
    "user_action_required", "http_status", "safe_message",
)


class RegistryValidationError(Exception):
    """registry.yaml is structurally invalid."""


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    title: str
    severity: str
    retryable: bool
    user_action_required: bool
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)

    @property
    def log_level(self) -> int:
        return logging.getLevelName(self.severity)


def parse_entry(raw: Mapping[str, Any]) -> ErrorEntry:
    """Validate one registry item and build its ErrorEntry."""
    code = raw.get("code", "?")
    missing = [name for name in REQUIRED_FIELDS if name not in raw]
    if missing:
        raise RegistryValidationError(f"{code}: missing fields {missing}")

    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Invalid code format: {code!r}")
    prefix = code.split("-")[1]
    if raw["domain"] != prefix:
        raise RegistryValidationError(f"{code}: domain {raw['domain']!r} does not match prefix {prefix!r}")
    if prefix not in VALID_DOMAINS:
        raise RegistryValidationError(f"{code}: unknown domain {prefix!r}")
    if raw["severity"] not in SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    status = int(raw["http_status"])
    if not 400 <= status <= 599:
        raise RegistryValidationError(f"{code}: http_status {status} is not an error status")

    return ErrorEntry(
        code=code,
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        user_action_required=bool(raw["user_action_required"]),
        http_status=status,
        safe_message=raw["safe_message"],
        remediation=list(raw.get("remediation") or []),
    )


class ErrorRegistry:
    """Code -> ErrorEntry map, filled by ``load()``."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}

    def load(self, path: str = DEFAULT_PATH) -> None:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        items = data.get("errors")
        if not isinstance(items, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for raw in items:
            entry = parse_entry(raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry

        self._entries = entries
        logger.info("Error registry loaded: %d codes from %s", len(entries), path)

    def get(self, code: str) -> ErrorEntry | None:
        return self._entries.get(code)


# Loaded by the app lifespan (and tests/conftest.py)
error_registry = ErrorRegistry()
