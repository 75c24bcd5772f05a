"""
Configuration module for the dual-lock trader.
Loads settings from environment variables with validation.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class TraderConfig:
    """Per-asset state machine parameters."""
    assets: Tuple[str, ...] = ("BTC", "SOL", "XRP")
    window_seconds: int = 900
    tick_interval_seconds: float = 2.0
    signal_interval_seconds: float = 15.0
    call_timeout_seconds: float = 5.0
    telemetry_interval_seconds: float = 10.0

    # Entry (single FOK taker order on the leader)
    entry_price_yes: float = 0.60
    entry_price_no: float = 0.40
    entry_size: float = 10.0

    # Ladder (GTC bids on the opposite side)
    ladder_levels: Tuple[float, ...] = (0.38, 0.36, 0.34, 0.32, 0.30)
    ladder_size: float = 5.0

    # Recovery
    recovery_deficit_threshold: float = 5.0  # USD
    recovery_buffer_shares: float = 2.0
    recovery_max_shares: float = 50.0  # sanity ceiling
    recovery_order_size: float = 10.0
    aggressive_price_bump: float = 0.02

    # Endgame
    endgame_seconds: float = 10.0
    endgame_price: float = 0.92
    endgame_max_shares: float = 6.0


@dataclass
class GuardrailConfig:
    """Entry gate thresholds."""
    rhr_threshold: float = 0.10  # fraction of window that must have elapsed
    obi_block_threshold: float = -0.30
    flip_skip_count: int = 2
    flip_recovery_count: int = 3
    min_stability: float = 0.6
    min_spread: float = 0.00
    max_spread: float = 0.50
    max_pair_cost: float = 0.99  # bestBid YES + bestBid NO


@dataclass
class ScoreConfig:
    """Upstream conviction score and regime settings."""
    micro_weight: float = 0.4
    stability_weight: float = 0.3
    meso_weight: float = 0.2
    macro_weight: float = 0.1

    start_threshold: float = 0.55
    hold_threshold: float = 0.35

    micro_meso_penalty: float = 0.5
    micro_macro_penalty: float = 0.8
    direction_dead_zone: float = 0.0001
    stability_normalizer: float = 0.5

    regime_history: int = 24
    steady_std_threshold: float = 0.15
    regime_trend_threshold: float = 0.05

    max_concurrent_start: int = 2


@dataclass
class RiskCaps:
    """Per-asset ceilings applied to every prospective order."""
    max_shares: float = 50.0
    max_notional: float = 25.0  # USD
    max_open_orders: int = 20
    max_pair_cost: float = 1.00
    pair_cost_buffer: float = 0.02
    taker_fee_rate: float = 0.02  # surcharge on FOK/IOC in pair projection


@dataclass
class ExchangeConfig:
    """Exchange selection."""
    mode: str = "shadow"
    starting_balance: float = 1000.0


@dataclass
class StorageConfig:
    """Snapshot and results storage."""
    data_dir: str = "./data"
    snapshot_file: str = "worker_state.json"
    results_db: str = "results.db"

    @property
    def snapshot_path(self) -> str:
        return os.path.join(self.data_dir, self.snapshot_file)

    @property
    def results_db_path(self) -> str:
        return os.path.join(self.data_dir, self.results_db)


@dataclass
class LogConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    json_logging: bool = True


@dataclass
class Config:
    """Main configuration container."""
    trader: TraderConfig = field(default_factory=TraderConfig)
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    score: ScoreConfig = field(default_factory=ScoreConfig)
    risk: RiskCaps = field(default_factory=RiskCaps)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LogConfig = field(default_factory=LogConfig)


SUPPORTED_EXCHANGE_MODES = ("shadow",)


def get_env(key: str, default: Optional[str] = None, required: bool = True) -> str:
    """Get environment variable with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value or ""


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes")


def get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    value = os.getenv(key, str(default))
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be an integer, got {value!r}")


def get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    value = os.getenv(key, str(default))
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be a number, got {value!r}")


def get_env_list(key: str, default: List[str]) -> List[str]:
    """Get comma separated environment variable."""
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config() -> Config:
    """Load and validate configuration from environment."""
    trader_defaults = TraderConfig()
    ladder = get_env_list("LADDER_LEVELS", [str(p) for p in trader_defaults.ladder_levels])
    try:
        ladder_levels = tuple(float(p) for p in ladder)
    except ValueError:
        raise ValueError(f"LADDER_LEVELS must be comma separated prices, got {ladder!r}")

    exchange_mode = get_env("EXCHANGE_MODE", "shadow", required=False).lower()
    if exchange_mode not in SUPPORTED_EXCHANGE_MODES:
        raise ValueError(
            f"EXCHANGE_MODE {exchange_mode!r} not supported (expected one of {SUPPORTED_EXCHANGE_MODES})"
        )

    return Config(
        trader=TraderConfig(
            assets=tuple(a.upper() for a in get_env_list("ASSETS", list(trader_defaults.assets))),
            tick_interval_seconds=get_env_float("TICK_INTERVAL_SECONDS", 2.0),
            signal_interval_seconds=get_env_float("SIGNAL_INTERVAL_SECONDS", 15.0),
            call_timeout_seconds=get_env_float("CALL_TIMEOUT_SECONDS", 5.0),
            entry_size=get_env_float("ENTRY_SIZE", 10.0),
            ladder_levels=ladder_levels,
            ladder_size=get_env_float("LADDER_SIZE", 5.0),
            recovery_deficit_threshold=get_env_float("RECOVERY_DEFICIT_USD", 5.0),
            endgame_seconds=get_env_float("ENDGAME_SECONDS", 10.0),
            endgame_price=get_env_float("ENDGAME_PRICE", 0.92),
        ),
        guardrails=GuardrailConfig(
            rhr_threshold=get_env_float("RHR_THRESHOLD", 0.10),
            obi_block_threshold=get_env_float("OBI_BLOCK_THRESHOLD", -0.30),
            min_stability=get_env_float("MIN_STABILITY", 0.6),
            max_spread=get_env_float("MAX_SPREAD", 0.50),
            max_pair_cost=get_env_float("MAX_ENTRY_PAIR_COST", 0.99),
        ),
        score=ScoreConfig(
            start_threshold=get_env_float("SCORE_START", 0.55),
            hold_threshold=get_env_float("SCORE_HOLD", 0.35),
            steady_std_threshold=get_env_float("REGIME_STEADY_STD", 0.15),
            max_concurrent_start=get_env_int("MAX_CONCURRENT_START", 2),
        ),
        risk=RiskCaps(
            max_shares=get_env_float("MAX_SHARES_PER_ASSET", 50.0),
            max_notional=get_env_float("MAX_NOTIONAL_USD_PER_ASSET", 25.0),
            max_open_orders=get_env_int("MAX_OPEN_ORDERS_PER_ASSET", 20),
        ),
        exchange=ExchangeConfig(
            mode=exchange_mode,
            starting_balance=get_env_float("STARTING_BALANCE", 1000.0),
        ),
        storage=StorageConfig(
            data_dir=get_env("DATA_DIR", "./data", required=False),
        ),
        logging=LogConfig(
            log_level=get_env("LOG_LEVEL", "INFO", required=False),
            json_logging=get_env_bool("JSON_LOGGING", True),
        ),
    )
