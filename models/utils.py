"""
Utility helpers used across advisory adapters.
"""

from __future__ import annotations

import json
import math
from typing import Any, Dict, Mapping, Optional

from models.errors import AdvisoryProviderError
from models.schemas import ACTIONS, Signal, TradeAction

_ACTION_ALIASES = {
    "BUY": "BUY",
    "LONG": "BUY",
    "OPEN_LONG": "BUY",
    "SELL": "SELL",
    "SHORT": "SELL",
    "OPEN_SHORT": "SELL",
    "CLOSE": "SELL",
    "HOLD": "HOLD",
    "WAIT": "HOLD",
    "NEUTRAL": "HOLD",
}


def clamp_confidence(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    """Clamp confidence values within [minimum, maximum]."""
    if math.isnan(value):
        return minimum
    return max(minimum, min(maximum, value))


def extract_json(content: str, *, provider: str | None = None) -> Dict[str, Any]:
    """Parse a JSON object out of model text, tolerating code fences."""
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise AdvisoryProviderError("PARSE_ERROR", "No JSON object in response.", provider=provider)
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise AdvisoryProviderError("PARSE_ERROR", f"Invalid JSON: {exc}", provider=provider) from exc
    if not isinstance(payload, dict):
        raise AdvisoryProviderError("PARSE_ERROR", "JSON payload is not an object.", provider=provider)
    return payload


def normalize_action(value: Any) -> Optional[TradeAction]:
    if value is None:
        return None
    return _ACTION_ALIASES.get(str(value).strip().upper())  # type: ignore[return-value]


def _optional_positive(payload: Mapping[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        raw = payload.get(key)
        if raw is None or raw == "":
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if value > 0 and math.isfinite(value):
            return value
    return None


def parse_signal(
    payload: Mapping[str, Any],
    *,
    symbol: str,
    provider: str,
    reference_price: float | None = None,
) -> Signal:
    """
    Convert a provider payload into a ``Signal``.

    Accepts camelCase or snake_case keys. A missing or unknown action, or a
    non-numeric confidence, raises a recoverable ``PARSE_ERROR``.
    """
    action = normalize_action(payload.get("action") or payload.get("decision"))
    if action is None or action not in ACTIONS:
        raise AdvisoryProviderError(
            "PARSE_ERROR",
            f"Unrecognised action {payload.get('action')!r}.",
            provider=provider,
        )
    try:
        confidence = clamp_confidence(float(payload.get("confidence")))
    except (TypeError, ValueError) as exc:
        raise AdvisoryProviderError(
            "PARSE_ERROR",
            f"Confidence is not numeric: {payload.get('confidence')!r}.",
            provider=provider,
        ) from exc

    entry = _optional_positive(payload, "entryPrice", "entry_price", "price") or reference_price
    stop = _optional_positive(payload, "stopLoss", "stop_loss")
    take_profit = _optional_positive(payload, "takeProfit", "take_profit")
    size = _optional_positive(payload, "positionSize", "position_size", "size")
    risk_reward = None
    if entry and stop and take_profit and abs(entry - stop) > 0:
        risk_reward = abs(take_profit - entry) / abs(entry - stop)

    return Signal(
        symbol=symbol,
        action=action,
        confidence=confidence,
        source_provider=provider,
        entry_price=entry,
        stop_loss=stop,
        take_profit=take_profit,
        position_size=size,
        risk_reward=risk_reward,
        reasoning=str(payload.get("reasoning") or ""),
    )


def deterministic_decision(context: Mapping[str, Any], *, source: str) -> Dict[str, Any]:
    """
    Produce a reproducible pseudo-decision when no remote model is configured.

    Momentum over the recent closes picks the direction; a high-volatility
    regime pulls the confidence down. Useful for local development.
    """
    price = float(context.get("price") or 0.0)
    closes = [float(c) for c in context.get("recent_closes") or [] if c]
    regime = str(context.get("regime") or "NORMAL")
    if len(closes) >= 2 and closes[0] > 0:
        momentum = (closes[-1] - closes[0]) / closes[0]
    else:
        momentum = 0.0
    if momentum > 0.01:
        action = "BUY"
    elif momentum < -0.01:
        action = "SELL"
    else:
        action = "HOLD"
    seed = sum(ord(c) for c in source + str(context.get("symbol", ""))) % 10 / 100
    confidence = clamp_confidence(0.55 + min(abs(momentum) * 5, 0.3) + seed)
    if regime in ("HIGH", "EXTREME"):
        confidence = clamp_confidence(confidence - 0.1)
    payload: Dict[str, Any] = {
        "action": action,
        "confidence": round(confidence, 4),
        "reasoning": f"Deterministic fallback from {len(closes)} closes, momentum {momentum:.4f}.",
    }
    if price > 0 and action != "HOLD":
        direction = 1 if action == "BUY" else -1
        payload["entryPrice"] = price
        payload["stopLoss"] = round(price * (1 - 0.02 * direction), 8)
        payload["takeProfit"] = round(price * (1 + 0.04 * direction), 8)
    return payload
