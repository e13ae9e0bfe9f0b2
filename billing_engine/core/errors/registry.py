"""
Error registry.

``registry.yaml`` is the single catalogue of billing error codes: the HTTP
status, the user-safe message and the remediation steps. The file is
validated when loaded; a malformed catalogue stops startup.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import yaml

from billing_engine.core.errors import CODE_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = os.path.join(os.path.dirname(__file__), "registry.yaml")

# ENT: entitlement/snapshot lookups, CHK: checkout procedures, SYS: everything else
VALID_DOMAINS = {"ENT", "CHK", "SYS"}
VALID_SEVERITIES = {"DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"}
REQUIRED_FIELDS = (
    "code",
    "domain",
    "title",
    "severity",
    "retryable",
    "user_action_required",
    "http_status",
    "safe_message",
    "remediation",
)

# Served for codes raised in code but missing from the catalogue
FALLBACK_CODE = "BIL-SYS-001"


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    domain: str
    title: str
    severity: str
    retryable: bool
    user_action_required: bool
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


class RegistryValidationError(Exception):
    """Raised when registry.yaml has structural errors."""


def _parse_entry(index: int, raw: Any) -> ErrorEntry:
    if not isinstance(raw, Mapping):
        raise RegistryValidationError(f"Entry {index}: expected a mapping")

    missing = [name for name in REQUIRED_FIELDS if name not in raw]
    if missing:
        raise RegistryValidationError(f"Entry {index} ({raw.get('code', '?')}): missing fields {missing}")

    code = raw["code"]
    if not isinstance(code, str) or not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"Entry {index}: invalid code format {code!r}")

    domain = raw["domain"]
    if domain not in VALID_DOMAINS:
        raise RegistryValidationError(f"{code}: unknown domain {domain!r}")
    if code.split("-")[1] != domain:
        raise RegistryValidationError(f"{code}: domain {domain!r} doesn't match the code prefix")

    if raw["severity"] not in VALID_SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    http_status = int(raw["http_status"])
    if not 400 <= http_status <= 599:
        raise RegistryValidationError(f"{code}: http_status {http_status} is not an error status")

    return ErrorEntry(
        code=code,
        domain=domain,
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        user_action_required=bool(raw["user_action_required"]),
        http_status=http_status,
        safe_message=raw["safe_message"],
        remediation=list(raw.get("remediation") or []),
        tags=list(raw.get("tags") or []),
    )


class ErrorRegistry:
    """Loads, validates, and provides lookup for error codes."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}
        self.schema_version: int = 0

    def load(self, path: Optional[str] = None) -> None:
        with open(path or DEFAULT_REGISTRY_PATH, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        raw_entries = data.get("errors", [])
        if not isinstance(raw_entries, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for index, raw in enumerate(raw_entries):
            entry = _parse_entry(index, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"Duplicate code: {entry.code}")
            entries[entry.code] = entry

        self._entries = entries
        self.schema_version = int(data.get("schema_version", 0))
        logger.info("error_registry_loaded", extra={"count": len(entries), "schema_version": self.schema_version})

    def get(self, code: str) -> Optional[ErrorEntry]:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        """Lookup by code, raising KeyError if not found."""
        entry = self._entries.get(code)
        if entry is None:
            raise KeyError(f"Unknown error code: {code!r}")
        return entry

    def all_codes(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# Loaded at startup by the application lifespan
error_registry = ErrorRegistry()
