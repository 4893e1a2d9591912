"""
Error types for advisory providers and ensemble aggregation.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

RECOVERABLE_CODES = frozenset(
    {"RATE_LIMIT", "NETWORK_ERROR", "TIMEOUT", "SERVER_ERROR", "PARSE_ERROR"}
)


class AdvisoryProviderError(RuntimeError):
    """Raised when a provider cannot return a usable response."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        provider: str | None = None,
        recoverable: bool | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider = provider
        self.recoverable = code in RECOVERABLE_CODES if recoverable is None else recoverable
        self.status_code = status_code

    @classmethod
    def from_status(cls, status_code: int, message: str, *, provider: str | None = None) -> "AdvisoryProviderError":
        if status_code == 429:
            code = "RATE_LIMIT"
        elif status_code >= 500:
            code = "SERVER_ERROR"
        elif status_code in (401, 403):
            code = "AUTHENTICATION"
        else:
            code = "BAD_REQUEST"
        return cls(code, message, provider=provider, status_code=status_code)


class EnsembleError(RuntimeError):
    """Raised when an aggregation round cannot produce a consensus."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
