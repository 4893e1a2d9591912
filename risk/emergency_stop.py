"""
Sticky emergency stop for halting all new trade execution.

Unlike a cooldown-based breaker, the stop never resumes on its own: once
tripped it stays active until an operator clears it explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from risk.schemas import RiskEvaluation, RiskProfile

audit_logger = logging.getLogger("risk.audit")


@dataclass(slots=True, frozen=True)
class EmergencyStopEvent:
    action: str
    reason: str | None
    actor: str
    at: datetime


class EmergencyStop:
    """Operates on the emergency-stop fields of a ``RiskProfile``."""

    def __init__(
        self,
        profile: RiskProfile,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._profile = profile
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self.history: list[EmergencyStopEvent] = []

    @property
    def active(self) -> bool:
        return self._profile.emergency_stop_active

    def trip(self, reason: str, *, actor: str = "system") -> bool:
        """Activate the stop. Returns False when it was already active."""
        if self._profile.emergency_stop_active:
            return False
        now = self._clock()
        self._profile.emergency_stop_active = True
        self._profile.emergency_stop_reason = reason
        self._profile.emergency_stop_at = now
        self.history.append(EmergencyStopEvent("ENABLED", reason, actor, now))
        audit_logger.critical("EMERGENCY STOP ENABLED by %s: %s", actor, reason)
        return True

    def clear(self, *, actor: str = "operator") -> bool:
        """Deactivate the stop. Returns False when it was not active."""
        if not self._profile.emergency_stop_active:
            return False
        previous_reason = self._profile.emergency_stop_reason
        now = self._clock()
        self._profile.emergency_stop_active = False
        self._profile.emergency_stop_reason = None
        self._profile.emergency_stop_at = None
        self.history.append(EmergencyStopEvent("DISABLED", previous_reason, actor, now))
        audit_logger.warning(
            "Emergency stop disabled by %s (was: %s)", actor, previous_reason
        )
        return True

    def evaluate(self, evaluation: RiskEvaluation) -> None:
        passed = not self._profile.emergency_stop_active
        evaluation.record_check("emergency_stop", passed)
        if not passed:
            evaluation.add_violation(
                "EMERGENCY_STOP_ACTIVE",
                "Emergency stop active; trading suspended.",
                reason=self._profile.emergency_stop_reason,
                since=(
                    self._profile.emergency_stop_at.isoformat()
                    if self._profile.emergency_stop_at
                    else None
                ),
            )
