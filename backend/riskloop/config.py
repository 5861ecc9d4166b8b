"""Configuration module for the decision and risk-control loop."""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


_TRUE_VALUES = ("1", "true", "yes", "y")


@dataclass
class CircuitBreakerConfig:
    """Process-wide risk guardrail thresholds. Changed only through CircuitBreaker.update_config."""

    max_trade_usd: float = 50.0
    max_daily_loss_percent: float = 30.0
    max_drawdown_percent: float = 40.0
    max_open_positions: int = 5
    min_balance_usd: float = 10.0
    emergency_stop: bool = False
    max_trade_balance_percent: float = 40.0
    max_consecutive_losses: int = 5
    halt_drawdown_percent: float = 20.0

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValueError: If any threshold is out of range
        """
        if self.max_trade_usd <= 0:
            raise ValueError("MAX_TRADE_USD must be greater than 0")
        if not 0.0 < self.max_daily_loss_percent <= 100.0:
            raise ValueError("MAX_DAILY_LOSS_PERCENT must be between 0 and 100")
        if not 0.0 < self.max_drawdown_percent <= 100.0:
            raise ValueError("MAX_DRAWDOWN_PERCENT must be between 0 and 100")
        if self.max_open_positions < 1:
            raise ValueError("MAX_OPEN_POSITIONS must be at least 1")
        if self.min_balance_usd < 0:
            raise ValueError("MIN_BALANCE_USD must be non-negative")
        if not 0.0 < self.max_trade_balance_percent <= 100.0:
            raise ValueError("MAX_TRADE_BALANCE_PERCENT must be between 0 and 100")
        if self.max_consecutive_losses < 1:
            raise ValueError("MAX_CONSECUTIVE_LOSSES must be at least 1")
        if not 0.0 < self.halt_drawdown_percent <= 100.0:
            raise ValueError("HALT_DRAWDOWN_PERCENT must be between 0 and 100")


@dataclass
class ArbitrationConfig:
    """Confidence floors for each arbitration tier, all on a 0-1 scale."""

    aggressive_floor: float = 0.35
    technical_floor: float = 0.60
    expert_floor: float = 0.45
    ai_floor: float = 0.45


@dataclass
class SizingConfig:
    """Kelly sizing and leverage band parameters."""

    min_balance_floor_usd: float = 3.0
    default_kelly_fraction: float = 0.20
    kelly_min: float = 0.10
    kelly_max: float = 0.25
    max_balance_pct: float = 0.25
    pooled_max_balance_pct: float = 0.35
    max_collateral_usd: float = 500.0
    pooled_max_collateral_usd: float = 1000.0
    hard_cap_balance_pct: float = 0.40
    min_leverage: float = 1.0
    max_leverage: float = 12.0
    high_volatility_pct: float = 3.0
    low_volatility_pct: float = 1.0
    volatility_leverage_scale: float = 0.6
    stats_window: int = 20


@dataclass
class MonitorConfig:
    """Exit rule thresholds for open positions."""

    excellent_profit_pct: float = 8.0
    great_profit_pct: float = 5.0
    tight_stop_pct: float = -2.5
    time_exit_hours: float = 24.0
    time_exit_min_profit_pct: float = 3.0
    max_hold_hours: float = 48.0
    regime_reversal_strength: float = 0.7


def _get_float(name: str, default: str) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be a valid float")


def _get_int(name: str, default: str) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be a valid integer")


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


@dataclass
class Config:
    """Configuration for the trading loop loaded from environment variables."""

    # Mode
    run_mode: str  # "paper" | "live"

    # Exchange
    exchange_id: str
    exchange_api_key: Optional[str]
    exchange_api_secret: Optional[str]
    symbols: List[str]
    timeframe: str
    history_lookback: int

    # Scheduling
    cycle_interval_minutes: float
    agent_pacing_seconds: float
    position_pacing_seconds: float
    max_workers: int

    # Agents
    agents_file: Optional[str]
    mock_starting_equity: float  # Balance of the default agent when no agents file is given

    # LLM (AI tier is disabled when no key is set)
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_model: str

    # Alerts
    telegram_bot_token: Optional[str]
    telegram_chat_id: Optional[str]

    # Output
    cycle_log_file: str
    api_host: str
    api_port: int

    # Persistence (in-memory only when None)
    state_file: Optional[str] = None

    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    arbitration: ArbitrationConfig = field(default_factory=ArbitrationConfig)
    sizing: SizingConfig = field(default_factory=SizingConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables with validation.

        Returns:
            Config: Validated configuration object

        Raises:
            ValueError: If required fields are missing or invalid
        """
        # Load .env file if it exists
        load_dotenv()

        run_mode = os.getenv("RUN_MODE", "paper").strip().lower()
        if run_mode not in ("paper", "live"):
            raise ValueError("RUN_MODE must be either 'paper' or 'live'")

        exchange_id = os.getenv("EXCHANGE_ID", "binance")
        exchange_api_key = os.getenv("EXCHANGE_API_KEY") or None
        exchange_api_secret = os.getenv("EXCHANGE_API_SECRET") or None
        if run_mode == "live":
            missing = [
                name for name, value in (
                    ("EXCHANGE_API_KEY", exchange_api_key),
                    ("EXCHANGE_API_SECRET", exchange_api_secret),
                ) if not value
            ]
            if missing:
                raise ValueError(f"Missing required environment variables for live mode: {', '.join(missing)}")

        symbols_str = os.getenv("SYMBOLS", "BTC/USDT,ETH/USDT")
        symbols = [s.strip() for s in symbols_str.split(",") if s.strip()]
        if not symbols:
            raise ValueError("SYMBOLS must contain at least one valid symbol")

        timeframe = os.getenv("TIMEFRAME", "5m")
        history_lookback = _get_int("HISTORY_LOOKBACK", "250")
        if history_lookback < 200:
            raise ValueError("HISTORY_LOOKBACK must be at least 200")

        cycle_interval_minutes = _get_float("CYCLE_INTERVAL_MINUTES", "10")
        agent_pacing_seconds = _get_float("AGENT_PACING_SECONDS", "5")
        position_pacing_seconds = _get_float("POSITION_PACING_SECONDS", "1")
        max_workers = _get_int("MAX_WORKERS", "1")

        if cycle_interval_minutes <= 0:
            raise ValueError("CYCLE_INTERVAL_MINUTES must be greater than 0")
        if agent_pacing_seconds < 0 or position_pacing_seconds < 0:
            raise ValueError("Pacing delays must be non-negative")
        if max_workers < 1:
            raise ValueError("MAX_WORKERS must be at least 1")

        mock_starting_equity = _get_float("MOCK_STARTING_EQUITY", "100")
        if mock_starting_equity <= 0:
            raise ValueError("MOCK_STARTING_EQUITY must be greater than 0")

        circuit_breaker = CircuitBreakerConfig(
            max_trade_usd=_get_float("MAX_TRADE_USD", "50"),
            max_daily_loss_percent=_get_float("MAX_DAILY_LOSS_PERCENT", "30"),
            max_drawdown_percent=_get_float("MAX_DRAWDOWN_PERCENT", "40"),
            max_open_positions=_get_int("MAX_OPEN_POSITIONS", "5"),
            min_balance_usd=_get_float("MIN_BALANCE_USD", "10"),
            emergency_stop=_get_bool("EMERGENCY_STOP", "false"),
            max_consecutive_losses=_get_int("MAX_CONSECUTIVE_LOSSES", "5"),
            halt_drawdown_percent=_get_float("HALT_DRAWDOWN_PERCENT", "20"),
        )
        circuit_breaker.validate()

        arbitration = ArbitrationConfig(
            aggressive_floor=_get_float("AGGRESSIVE_CONFIDENCE_FLOOR", "0.35"),
            technical_floor=_get_float("TECHNICAL_CONFIDENCE_FLOOR", "0.60"),
            expert_floor=_get_float("EXPERT_CONFIDENCE_FLOOR", "0.45"),
            ai_floor=_get_float("AI_CONFIDENCE_FLOOR", "0.45"),
        )
        for name, value in vars(arbitration).items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name.upper()} must be between 0.0 and 1.0")

        sizing = SizingConfig(
            min_balance_floor_usd=_get_float("MIN_BALANCE_FLOOR_USD", "3"),
            max_leverage=_get_float("MAX_LEVERAGE", "12"),
        )
        if not 1.0 <= sizing.max_leverage <= 12.0:
            raise ValueError("MAX_LEVERAGE must be between 1 and 12")

        return cls(
            run_mode=run_mode,
            exchange_id=exchange_id,
            exchange_api_key=exchange_api_key,
            exchange_api_secret=exchange_api_secret,
            symbols=symbols,
            timeframe=timeframe,
            history_lookback=history_lookback,
            cycle_interval_minutes=cycle_interval_minutes,
            agent_pacing_seconds=agent_pacing_seconds,
            position_pacing_seconds=position_pacing_seconds,
            max_workers=max_workers,
            agents_file=os.getenv("AGENTS_FILE") or None,
            mock_starting_equity=mock_starting_equity,
            llm_api_key=os.getenv("LLM_API_KEY") or None,
            llm_base_url=os.getenv("LLM_BASE_URL", "https://api.deepseek.com"),
            llm_model=os.getenv("LLM_MODEL", "deepseek-chat"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID") or None,
            cycle_log_file=os.getenv("CYCLE_LOG_FILE", "logs/cycle_log.jsonl"),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=_get_int("API_PORT", "8000"),
            state_file=os.getenv("STATE_FILE", "data/riskloop_state.json") or None,
            circuit_breaker=circuit_breaker,
            arbitration=arbitration,
            sizing=sizing,
            monitor=MonitorConfig(),
        )
