"""
Local configuration defaults for the trading decision engine.

Values here are the built-in defaults. Environment variables override the
secrets and a handful of operational knobs; runtime edits are persisted per
namespace through ``services.storage.settings_store``.
"""

import os

INFLUX_URL = os.getenv("INFLUX_URL", "http://localhost:8086")
INFLUX_ORG = os.getenv("INFLUX_ORG", "tradegate")
INFLUX_BUCKET = os.getenv("INFLUX_BUCKET", "tradegate")
INFLUX_TOKEN = os.getenv("INFLUX_TOKEN")

# Persistence backend: "memory" or "influx".
STORAGE_BACKEND = os.getenv("TRADEGATE_STORAGE", "memory")

# Symbols evaluated by the scheduler loop.
TRADABLE_INSTRUMENTS = [
    "BTC-USDT",
    "ETH-USDT",
    "SOL-USDT",
]

# Scheduler defaults (seconds)
EVALUATION_INTERVAL = 300
ARBITRAGE_SCAN_INTERVAL = 30
THRESHOLD_REOPTIMIZE_INTERVAL = 3600

OKX_API_KEY = os.getenv("OKX_API_KEY")
OKX_API_SECRET = os.getenv("OKX_API_SECRET")
OKX_PASSPHRASE = os.getenv("OKX_PASSPHRASE")
OKX_SIMULATED = os.getenv("OKX_SIMULATED", "1") != "0"

BINANCE_API_KEY = os.getenv("BINANCE_API_KEY")
BINANCE_API_SECRET = os.getenv("BINANCE_API_SECRET")
BINANCE_BASE_URL = os.getenv("BINANCE_BASE_URL", "https://testnet.binance.vision")

DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
QWEN_API_KEY = os.getenv("QWEN_API_KEY")

MODEL_DEFAULTS = {
    "deepseek-v1": {
        "display_name": "DeepSeek Chat",
        "enabled": True,
        "weight": 1.0,
        "requests_per_minute": 60,
        "temperature": 0.2,
        "max_tokens": 800,
        "cost_per_1k_tokens": 0.0014,
    },
    "qwen-v1": {
        "display_name": "Qwen Plus",
        "enabled": True,
        "weight": 1.0,
        "requests_per_minute": 60,
        "temperature": 0.2,
        "max_tokens": 800,
        "cost_per_1k_tokens": 0.002,
    },
}

RISK_SETTINGS = {
    "risk_per_trade_percent": float(os.getenv("RISK_PER_TRADE_PERCENTAGE", "5")),
    "max_daily_loss_percent": float(os.getenv("MAX_DAILY_LOSS_PERCENTAGE", "10")),
    "max_concurrent_positions": int(os.getenv("MAX_CONCURRENT_POSITIONS", "3")),
    "default_stop_loss_percent": float(os.getenv("DEFAULT_STOP_LOSS_PERCENTAGE", "2")),
    "min_trade_amount_usd": float(os.getenv("MIN_TRADE_AMOUNT_USD", "10")),
    "starting_equity": float(os.getenv("STARTING_EQUITY", "1000")),
    "quote_asset": "USDT",
}

ENSEMBLE_SETTINGS = {
    "min_providers": 2,
    "consensus_threshold": 0.65,
    "fallback_strategy": "SAFE_HOLD",
    "timeout_seconds": 30.0,
    "disagreement_threshold": 0.0,
    "weights": {"accuracy": 0.5, "speed": 0.3, "cost": 0.2},
}

THRESHOLD_SETTINGS = {
    "base_threshold": 0.65,
    "min_threshold": 0.4,
    "max_threshold": 0.9,
    "step": 0.05,
    "target_trades": 50,
    "reoptimize_every": 100,
    "reoptimize_hours": 24,
    "recent_window": 50,
    "reference_equity": float(os.getenv("STARTING_EQUITY", "1000")),
    # Hourly crypto bars annualize to 0.5-1.0; halve them so the volatility bands still discriminate.
    "volatility_scale": 2.0,
}

ROUTER_SETTINGS = {
    "min_spread_percent": 0.1,
    "arbitrage_ttl_seconds": 30,
    "order_timeout_seconds": 10.0,
    "quote_timeout_seconds": 5.0,
    "latency_ceiling_ms": 2000.0,
    "max_arbitrage_notional": 1000.0,
    "max_fallbacks": 2,
}

EXCHANGE_INFO = {
    "binance": {
        "maker_fee_percent": 0.1,
        "taker_fee_percent": 0.1,
        "latency_ms": 50.0,
        "reliability": 95.0,
    },
    "okx": {
        "maker_fee_percent": 0.08,
        "taker_fee_percent": 0.1,
        "latency_ms": 80.0,
        "reliability": 92.0,
    },
}

ENGINE_SETTINGS = {
    "cooldown_seconds": 60,
    "round_timeout_seconds": 30.0,
    "market_data_exchange": "binance",
    "candle_interval": "1h",
    "candle_limit": 100,
    "risk_tolerance": "MODERATE",
}
