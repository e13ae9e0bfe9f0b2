"""
Structured billing errors.

Raise ``BillingEngineError`` with a catalogued code (see registry.yaml); the
exception handler in ``middleware`` turns it into the JSON error envelope
with the registered HTTP status.

    raise BillingEngineError("BIL-CHK-002", detail="rpc returned HTTP 404")

Codes are ``BIL-<DOMAIN>-<NNN>``. ``detail`` and ``context`` go to the logs
only and never reach the client.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

CODE_PATTERN = re.compile(r"^BIL-[A-Z]{2,6}-\d{3}$")


class BillingEngineError(Exception):
    """Error tied to a registry code."""

    def __init__(
        self,
        code: str,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = dict(context or {})
        super().__init__(f"{code}: {detail}" if detail else code)

    @property
    def domain(self) -> str:
        return self.code.split("-")[1]

    def log_fields(self) -> Dict[str, Any]:
        """Flat ``extra=`` mapping for structured logging."""
        fields: Dict[str, Any] = {
            "error.code": self.code,
            "error.domain": self.domain,
            "error.detail": self.detail,
        }
        for key, value in self.context.items():
            fields[f"error.ctx.{key}"] = value
        return fields
