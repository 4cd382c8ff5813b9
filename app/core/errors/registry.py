"""
Error registry - the response and logging metadata for each CS-* code.

registry.yaml gives every code the HTTP status, the user-facing message and
the log severity used when a ChartSyncError reaches the HTTP layer. Whether
an error may be retried is carried by the exception itself, not the registry.

Loading fails when an entry is malformed, or when an exception class in
app.core.errors raises a default code that has no entry.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Set

import yaml

from app.core.errors import CODE_PATTERN, ChartSyncError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {"code", "domain", "title", "severity", "http_status", "safe_message"}

SEVERITY_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    title: str
    log_level: int
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)


# Served when a raised code has no entry, including before load() has run.
UNREGISTERED = ErrorEntry(
    code="CS-SYS-001",
    title="Unexpected error",
    log_level=logging.ERROR,
    http_status=500,
    safe_message="An unexpected error occurred.",
)


class RegistryValidationError(Exception):
    """Raised when registry.yaml has structural errors."""


def exception_codes() -> Set[str]:
    """Default codes of ChartSyncError and every subclass, however deep."""
    codes: Set[str] = set()
    pending = [ChartSyncError]
    while pending:
        cls = pending.pop()
        codes.add(cls.default_code)
        pending.extend(cls.__subclasses__())
    return codes


def _parse_entry(idx: int, raw: dict) -> ErrorEntry:
    missing = REQUIRED_FIELDS - set(raw)
    if missing:
        raise RegistryValidationError(
            f"Entry {idx} ({raw.get('code', '?')}): missing fields {sorted(missing)}"
        )

    code = raw["code"]
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Invalid code format: {code!r}")

    code_domain = code.split("-")[1]
    if raw["domain"] != code_domain:
        raise RegistryValidationError(
            f"{code}: domain {raw['domain']!r} doesn't match code prefix {code_domain!r}"
        )

    level = SEVERITY_LEVELS.get(raw["severity"])
    if level is None:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    return ErrorEntry(
        code=code,
        title=raw["title"],
        log_level=level,
        http_status=int(raw["http_status"]),
        safe_message=raw["safe_message"],
        remediation=list(raw.get("remediation") or []),
    )


class ErrorRegistry:
    """Loads, validates, and resolves error codes."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}
        self.schema_version: int = 0

    def load(self, path: str | None = None) -> None:
        if path is None:
            path = os.path.join(os.path.dirname(__file__), "registry.yaml")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        errors_list = data.get("errors", [])
        if not isinstance(errors_list, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for idx, raw in enumerate(errors_list):
            entry = _parse_entry(idx, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry

        unregistered = sorted(exception_codes() - set(entries))
        if unregistered:
            raise RegistryValidationError(f"Codes raised but not registered: {', '.join(unregistered)}")

        self._entries = entries
        self.schema_version = data.get("schema_version", 0)
        logger.info("error_registry_loaded", extra={"count": len(entries), "schema_version": self.schema_version})

    def get(self, code: str) -> ErrorEntry | None:
        return self._entries.get(code)

    def resolve(self, code: str) -> ErrorEntry:
        """Entry for ``code``, or the generic CS-SYS-001 entry."""
        return self._entries.get(code) or self._entries.get(UNREGISTERED.code) or UNREGISTERED

    def __len__(self) -> int:
        return len(self._entries)


# Module-level singleton - loaded once at startup
error_registry = ErrorRegistry()
