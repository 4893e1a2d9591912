"""
Exceptions raised by the risk gateway.
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

RiskErrorCode = Literal["POSITION_SIZE", "DAILY_LOSS", "MAX_POSITIONS", "VALIDATION"]


class RiskError(RuntimeError):
    """Raised when a risk operation cannot produce a result for its inputs."""

    def __init__(
        self,
        code: RiskErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {super().__str__()}"
