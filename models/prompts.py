"""
Prompt builders for advisory providers.

A builder is a pure function of the market snapshot: it never performs I/O
and never influences how the returned signal is interpreted.
"""

from __future__ import annotations

from typing import Any, Dict, Final, Sequence

from models.schemas import MarketSnapshot

RESPONSE_CONTRACT: Final = (
    "Respond strictly with a JSON object containing: "
    "`action` (BUY, SELL or HOLD), `confidence` (0-1), `reasoning`, "
    "`entryPrice`, `stopLoss`, `takeProfit` and optionally `positionSize`."
)

DEFAULT_TEMPLATE: Final = (
    "Symbol: {symbol}\n"
    "Price: {price}\n"
    "Bid/Ask: {bid} / {ask} (spread {spread})\n"
    "24h volume: {volume_24h}\n"
    "Recent closes: {recent_closes}\n"
    "Volatility regime: {regime} (realized {realized_volatility}, ATR {atr_percent}%)\n"
    "Volume ratio vs average: {volume_ratio}\n"
    "Open position: {open_position}\n"
    "{extra}"
    "{contract}\n"
)


class PromptBuilder:
    """Formats a snapshot into the provider's prompt text."""

    template: str = DEFAULT_TEMPLATE
    system_prompt: str = (
        "You are a disciplined crypto trading analyst. Capital preservation "
        "comes before opportunity. " + RESPONSE_CONTRACT
    )

    def __init__(self, *, max_closes: int = 24, template: str | None = None) -> None:
        self.max_closes = max_closes
        if template is not None:
            self.template = template

    def build(self, snapshot: MarketSnapshot) -> str:
        context = _PromptContext(
            symbol=snapshot.symbol,
            price=_fmt(snapshot.price),
            bid=_fmt(snapshot.bid),
            ask=_fmt(snapshot.ask),
            spread=_fmt(snapshot.spread_percent, suffix="%"),
            volume_24h=_fmt(snapshot.volume_24h),
            recent_closes=self._format_closes(snapshot.recent_closes),
            regime=snapshot.regime or "UNKNOWN",
            realized_volatility=_fmt(snapshot.realized_volatility),
            atr_percent=_fmt(snapshot.atr_percent),
            volume_ratio=_fmt(snapshot.volume_ratio),
            open_position=self._format_position(snapshot.open_position),
            extra=self._format_metadata_block(snapshot.metadata),
            contract=RESPONSE_CONTRACT,
        )
        try:
            return self.template.format_map(context)
        except (ValueError, IndexError):
            return DEFAULT_TEMPLATE.format_map(context)

    def _format_closes(self, closes: Sequence[float]) -> str:
        if not closes:
            return "N/A"
        return ", ".join(_fmt(value) for value in list(closes)[-self.max_closes:])

    @staticmethod
    def _format_position(position: Dict[str, Any] | None) -> str:
        if not position:
            return "None"
        return (
            f"{position.get('side', 'n/a')} qty={position.get('quantity', 'n/a')} "
            f"entry={position.get('entry_price', 'n/a')}"
        )

    @staticmethod
    def _format_metadata_block(metadata: Dict[str, Any] | None) -> str:
        if not metadata:
            return ""
        lines = [f"- {key}: {value}" for key, value in metadata.items()]
        return "Notes:\n" + "\n".join(lines) + "\n"


class DeepSeekPromptBuilder(PromptBuilder):
    system_prompt = (
        "You are DeepSeek, assisting a risk-first trading desk. Weigh trend, "
        "volatility regime and liquidity before recommending a trade. "
        + RESPONSE_CONTRACT
    )


class QwenPromptBuilder(PromptBuilder):
    system_prompt = (
        "You are Qwen, a quantitative market analyst. Prefer HOLD when the "
        "evidence is mixed. " + RESPONSE_CONTRACT
    )


class _PromptContext(dict):
    """Gracefully handle missing keys during template formatting."""

    def __missing__(self, key: str) -> str:
        return f"{{{key}}}"


def _fmt(value: float | None, *, suffix: str = "") -> str:
    if value is None:
        return "N/A"
    return f"{value:.6g}{suffix}"
