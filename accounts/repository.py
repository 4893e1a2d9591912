"""
Repository abstractions for trade, position, decision and confidence storage.

The engine only needs append-style writes and point lookups by id/symbol, so
the interface stays CRUD-shaped and storage-engine agnostic.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.flux_table import FluxRecord
from influxdb_client.client.write_api import SYNCHRONOUS

from accounts.models import DecisionRecord, Position, Trade
from confidence.schemas import ConfidenceRecord
from data_pipeline.influx import InfluxConfig

logger = logging.getLogger(__name__)


class TradingRepository(ABC):
    """Interface for persisting and retrieving engine state."""

    @abstractmethod
    def record_trade(self, trade: Trade) -> None:
        raise NotImplementedError

    @abstractmethod
    def record_position(self, position: Position) -> None:
        raise NotImplementedError

    @abstractmethod
    def record_decision(self, decision: DecisionRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def record_confidence(self, record: ConfidenceRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_position(self, position_id: str) -> Optional[Position]:
        raise NotImplementedError

    @abstractmethod
    def get_open_position(self, symbol: str) -> Optional[Position]:
        raise NotImplementedError

    @abstractmethod
    def list_open_positions(self) -> List[Position]:
        raise NotImplementedError

    @abstractmethod
    def list_trades(self, *, since: datetime | None = None, symbol: str | None = None) -> List[Trade]:
        raise NotImplementedError

    @abstractmethod
    def list_confidence_records(self, limit: int | None = None) -> List[ConfidenceRecord]:
        raise NotImplementedError

    def close(self) -> None:
        return None


class InMemoryTradingRepository(TradingRepository):
    """Process-local repository used for paper runs and tests."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._trades: List[Trade] = []
        self._positions: Dict[str, Position] = {}
        self._decisions: List[DecisionRecord] = []
        self._confidence: List[ConfidenceRecord] = []

    def record_trade(self, trade: Trade) -> None:
        with self._lock:
            self._trades.append(trade)

    def record_position(self, position: Position) -> None:
        with self._lock:
            self._positions[position.position_id] = position

    def record_decision(self, decision: DecisionRecord) -> None:
        with self._lock:
            self._decisions.append(decision)

    def record_confidence(self, record: ConfidenceRecord) -> None:
        with self._lock:
            self._confidence.append(record)

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            return self._positions.get(position_id)

    def get_open_position(self, symbol: str) -> Optional[Position]:
        with self._lock:
            for position in self._positions.values():
                if position.symbol == symbol and position.is_open:
                    return position
        return None

    def list_open_positions(self) -> List[Position]:
        with self._lock:
            return [p for p in self._positions.values() if p.is_open]

    def list_trades(self, *, since: datetime | None = None, symbol: str | None = None) -> List[Trade]:
        with self._lock:
            trades = list(self._trades)
        if since is not None:
            trades = [t for t in trades if t.executed_at >= since]
        if symbol is not None:
            trades = [t for t in trades if t.symbol == symbol]
        return trades

    def list_decisions(self) -> List[DecisionRecord]:
        with self._lock:
            return list(self._decisions)

    def list_confidence_records(self, limit: int | None = None) -> List[ConfidenceRecord]:
        with self._lock:
            records = list(self._confidence)
        return records[-limit:] if limit else records


class InfluxTradingRepository(TradingRepository):
    """InfluxDB-backed repository."""

    TRADE_MEASUREMENT = "engine_trades"
    POSITION_MEASUREMENT = "engine_positions"
    DECISION_MEASUREMENT = "engine_decisions"
    CONFIDENCE_MEASUREMENT = "engine_confidence"

    def __init__(self, config: Optional[InfluxConfig] = None, *, client: InfluxDBClient | None = None) -> None:
        self._config = config or InfluxConfig.from_env()
        if client is None:
            if not self._config.token:
                raise ValueError("InfluxDB token is required for InfluxTradingRepository.")
            client = InfluxDBClient(
                url=self._config.url,
                token=self._config.token,
                org=self._config.org,
            )
        self._client = client
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)
        self._query_api = self._client.query_api()

    # ------------------------------------------------------------------ mutations
    def record_trade(self, trade: Trade) -> None:
        """Persist an immutable trade execution record."""
        point = (
            Point(self.TRADE_MEASUREMENT)
            .tag("trade_id", trade.trade_id)
            .tag("symbol", trade.symbol)
            .field("side", trade.side)
            .field("quantity", trade.quantity)
            .field("price", trade.price)
            .field("fee", trade.fee)
            .field("exchange", trade.exchange or "")
            .field("order_id", trade.order_id or "")
            .field("position_id", trade.position_id or "")
            .time(_to_time_ns(trade.executed_at), WritePrecision.NS)
        )
        self._write(point)

    def record_position(self, position: Position) -> None:
        """Persist the latest state for a position; later rows supersede earlier ones."""
        point = (
            Point(self.POSITION_MEASUREMENT)
            .tag("position_id", position.position_id)
            .tag("symbol", position.symbol)
            .field("side", position.side)
            .field("quantity", position.quantity)
            .field("entry_price", position.entry_price)
            .field("status", position.status)
            .field("exchange", position.exchange or "")
            .field("realized_pnl", position.realized_pnl)
            .field("opened_at_ns", _to_time_ns(position.opened_at))
            .time(_to_time_ns(position.closed_at or datetime.now(tz=timezone.utc)), WritePrecision.NS)
        )
        if position.stop_loss is not None:
            point = point.field("stop_loss", position.stop_loss)
        if position.take_profit is not None:
            point = point.field("take_profit", position.take_profit)
        if position.exit_price is not None:
            point = point.field("exit_price", position.exit_price)
        self._write(point)

    def record_decision(self, decision: DecisionRecord) -> None:
        point = (
            Point(self.DECISION_MEASUREMENT)
            .tag("decision_id", decision.decision_id)
            .tag("symbol", decision.symbol)
            .field("action", decision.action)
            .field("should_execute", decision.should_execute)
            .field("executed", decision.executed)
            .field("confidence", decision.confidence)
            .field("threshold", decision.threshold if decision.threshold is not None else -1.0)
            .field("reasoning", decision.reasoning)
            .field("exchange", decision.exchange or "")
            .time(_to_time_ns(decision.decided_at), WritePrecision.NS)
        )
        self._write(point)

    def record_confidence(self, record: ConfidenceRecord) -> None:
        point = (
            Point(self.CONFIDENCE_MEASUREMENT)
            .tag("symbol", record.symbol)
            .tag("outcome", record.outcome)
            .field("confidence", record.confidence)
            .field("threshold", record.threshold)
            .field("pnl", record.pnl)
            .field("executed", record.executed)
            .field("volatility", float(record.market_context.get("volatility", 0.0) or 0.0))
            .time(_to_time_ns(record.timestamp), WritePrecision.NS)
        )
        self._write(point)

    # ------------------------------------------------------------------ queries
    def get_position(self, position_id: str) -> Optional[Position]:
        query = f"""
from(bucket: "{self._config.bucket}")
  |> range(start: -90d)
  |> filter(fn: (r) => r["_measurement"] == "{self.POSITION_MEASUREMENT}")
  |> filter(fn: (r) => r["position_id"] == "{position_id}")
  |> group(columns: ["position_id", "_field"])
  |> last()
"""
        positions = _merge_position_records(self._safe_query(query))
        return positions[0] if positions else None

    def get_open_position(self, symbol: str) -> Optional[Position]:
        for position in self.list_open_positions():
            if position.symbol == symbol:
                return position
        return None

    def list_open_positions(self) -> List[Position]:
        query = f"""
from(bucket: "{self._config.bucket}")
  |> range(start: -90d)
  |> filter(fn: (r) => r["_measurement"] == "{self.POSITION_MEASUREMENT}")
  |> group(columns: ["position_id", "_field"])
  |> last()
"""
        return [p for p in _merge_position_records(self._safe_query(query)) if p.is_open]

    def list_trades(self, *, since: datetime | None = None, symbol: str | None = None) -> List[Trade]:
        start = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ") if since else "-30d"
        symbol_filter = f'\n  |> filter(fn: (r) => r["symbol"] == "{symbol}")' if symbol else ""
        query = f"""
from(bucket: "{self._config.bucket}")
  |> range(start: {start})
  |> filter(fn: (r) => r["_measurement"] == "{self.TRADE_MEASUREMENT}"){symbol_filter}
  |> pivot(rowKey: ["_time", "trade_id", "symbol"], columnKey: ["_field"], valueColumn: "_value")
  |> sort(columns: ["_time"])
"""
        trades: List[Trade] = []
        for record in self._safe_query(query):
            values = record.values
            trades.append(
                Trade(
                    trade_id=str(values.get("trade_id")),
                    symbol=str(values.get("symbol")),
                    side="BUY" if str(values.get("side")).upper() == "BUY" else "SELL",
                    quantity=float(values.get("quantity") or 0.0),
                    price=float(values.get("price") or 0.0),
                    fee=float(values.get("fee") or 0.0),
                    exchange=values.get("exchange") or None,
                    order_id=values.get("order_id") or None,
                    position_id=values.get("position_id") or None,
                    executed_at=record.get_time(),
                )
            )
        return trades

    def list_confidence_records(self, limit: int | None = None) -> List[ConfidenceRecord]:
        limit_clause = f"\n  |> tail(n: {int(limit)})" if limit else ""
        query = f"""
from(bucket: "{self._config.bucket}")
  |> range(start: -365d)
  |> filter(fn: (r) => r["_measurement"] == "{self.CONFIDENCE_MEASUREMENT}")
  |> pivot(rowKey: ["_time", "symbol", "outcome"], columnKey: ["_field"], valueColumn: "_value")
  |> group()
  |> sort(columns: ["_time"]){limit_clause}
"""
        records: List[ConfidenceRecord] = []
        for record in self._safe_query(query):
            values = record.values
            records.append(
                ConfidenceRecord(
                    timestamp=record.get_time(),
                    symbol=str(values.get("symbol")),
                    confidence=float(values.get("confidence") or 0.0),
                    threshold=float(values.get("threshold") or 0.0),
                    outcome=str(values.get("outcome") or "NEUTRAL"),  # type: ignore[arg-type]
                    pnl=float(values.get("pnl") or 0.0),
                    executed=bool(values.get("executed")),
                    market_context={"volatility": float(values.get("volatility") or 0.0)},
                )
            )
        return records

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------ helpers
    def _write(self, point: Point) -> None:
        self._write_api.write(bucket=self._config.bucket, org=self._config.org, record=point)

    def _safe_query(self, flux_query: str) -> List[FluxRecord]:
        try:
            tables = self._query_api.query(org=self._config.org, query=flux_query)
        except Exception as exc:  # pragma: no cover - network path
            logger.warning("Failed to query InfluxDB: %s", exc, exc_info=True)
            return []

        records: List[FluxRecord] = []
        for table in tables:
            for record in table.records:
                records.append(record)
        return records


def build_repository(backend: str | None = None) -> TradingRepository:
    """Return the repository selected by ``config.STORAGE_BACKEND``."""
    if backend is None:
        import config

        backend = config.STORAGE_BACKEND
    if backend == "influx":
        influx = InfluxConfig.from_env()
        if influx.ping():
            return InfluxTradingRepository(influx)
        logger.warning("InfluxDB at %s is unreachable; using in-memory repository.", influx.url)
        return InMemoryTradingRepository()
    if backend != "memory":
        logger.warning("Unknown storage backend %r; using in-memory repository.", backend)
    return InMemoryTradingRepository()


def _merge_position_records(records: List[FluxRecord]) -> List[Position]:
    by_pos: dict[str, dict] = {}
    for rec in records:
        v = rec.values
        pid = str(v.get("position_id"))
        by_pos.setdefault(pid, {
            "position_id": pid,
            "symbol": str(v.get("symbol", "")),
        })
        by_pos[pid][str(v.get("_field"))] = rec.get_value()
    out: List[Position] = []
    for pid, data in by_pos.items():
        opened_at_ns = data.get("opened_at_ns")
        out.append(
            Position(
                position_id=pid,
                symbol=data["symbol"],
                side="BUY" if str(data.get("side", "BUY")).upper() == "BUY" else "SELL",
                quantity=float(data.get("quantity", 0.0) or 0.0),
                entry_price=float(data.get("entry_price", 0.0) or 0.0),
                stop_loss=_optional_float(data.get("stop_loss")),
                take_profit=_optional_float(data.get("take_profit")),
                exchange=data.get("exchange") or None,
                status="CLOSED" if data.get("status") == "CLOSED" else "OPEN",
                opened_at=_from_ns(opened_at_ns) if opened_at_ns else datetime.now(tz=timezone.utc),
                exit_price=_optional_float(data.get("exit_price")),
                realized_pnl=float(data.get("realized_pnl", 0.0) or 0.0),
            )
        )
    return out


def _optional_float(value: object) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_time_ns(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1_000_000_000)


def _from_ns(ns: object) -> datetime:
    return datetime.fromtimestamp(int(ns) / 1_000_000_000, tz=timezone.utc)
