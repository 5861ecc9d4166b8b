"""Data models for the decision and risk-control loop."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Action(str, Enum):
    """Final action a signal recommends."""

    LONG = "LONG"
    SHORT = "SHORT"
    CLOSE = "CLOSE"
    HOLD = "HOLD"


class Side(str, Enum):
    """Direction of an open position."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG


class RegimeType(str, Enum):
    """Market condition labels."""

    TRENDING_UP = "TRENDING_UP"
    TRENDING_DOWN = "TRENDING_DOWN"
    RANGING = "RANGING"
    VOLATILE = "VOLATILE"


class Severity(str, Enum):
    """Severity attached to a risk check outcome."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return ["low", "medium", "high", "critical"].index(self.value)


class Urgency(str, Enum):
    """How urgently a provider wants its signal acted upon."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class PricePoint:
    """Single observation of a market."""

    timestamp: int  # Unix milliseconds
    price: float
    volume: float


@dataclass(frozen=True)
class PriceSeries:
    """Immutable, strictly time-ordered price/volume history for one symbol."""

    symbol: str
    points: Tuple[PricePoint, ...]

    def __post_init__(self):
        object.__setattr__(self, "points", tuple(self.points))
        for prev, cur in zip(self.points, self.points[1:]):
            if cur.timestamp <= prev.timestamp:
                raise ValueError(
                    f"PriceSeries for {self.symbol} is not strictly increasing at timestamp {cur.timestamp}"
                )

    @classmethod
    def from_values(
        cls,
        symbol: str,
        prices: Sequence[float],
        volumes: Optional[Sequence[float]] = None,
        start_ms: int = 0,
        step_ms: int = 300_000,
    ) -> "PriceSeries":
        """
        Build a series from parallel price and volume lists.

        Args:
            symbol: Trading symbol
            prices: Prices, oldest first
            volumes: Volumes of equal length (defaults to 1.0 each)
            start_ms: Timestamp of the first point
            step_ms: Spacing between points (default: 5 minutes)

        Returns:
            PriceSeries

        Raises:
            ValueError: If prices and volumes differ in length
        """
        if volumes is None:
            volumes = [1.0] * len(prices)
        if len(volumes) != len(prices):
            raise ValueError(
                f"Volume series length {len(volumes)} does not match price series length {len(prices)}"
            )
        points = tuple(
            PricePoint(timestamp=start_ms + i * step_ms, price=float(p), volume=float(v))
            for i, (p, v) in enumerate(zip(prices, volumes))
        )
        return cls(symbol=symbol, points=points)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def prices(self) -> List[float]:
        return [p.price for p in self.points]

    @property
    def volumes(self) -> List[float]:
        return [p.volume for p in self.points]

    @property
    def last_price(self) -> float:
        return self.points[-1].price

    @property
    def last_timestamp(self) -> int:
        return self.points[-1].timestamp

    def price_change_pct(self, hours: float = 24.0) -> float:
        """
        Percent change between the last price and the price `hours` earlier.

        Uses the oldest point when the series is shorter than the window.
        """
        if len(self.points) < 2:
            return 0.0
        cutoff = self.last_timestamp - int(hours * 3_600_000)
        reference = self.points[0]
        for point in self.points:
            if point.timestamp > cutoff:
                break
            reference = point
        if reference.price == 0:
            return 0.0
        return (self.last_price - reference.price) / reference.price * 100


@dataclass(frozen=True)
class MACDValues:
    value: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    width: float


@dataclass(frozen=True)
class EMAValues:
    ema9: float
    ema21: float
    ema50: float
    ema200: float


@dataclass(frozen=True)
class TechnicalIndicators:
    """Indicator set derived from one price series. Recomputed every cycle."""

    rsi: float
    macd: MACDValues
    bollinger: BollingerBands
    ema: EMAValues
    volume_ratio: float
    momentum: float  # Percent change over 10 points
    volatility_pct: float  # Mean absolute delta as percent of last price

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TechnicalIndicators":
        return cls(
            rsi=data["rsi"],
            macd=MACDValues(**data["macd"]),
            bollinger=BollingerBands(**data["bollinger"]),
            ema=EMAValues(**data["ema"]),
            volume_ratio=data["volume_ratio"],
            momentum=data["momentum"],
            volatility_pct=data["volatility_pct"],
        )


@dataclass(frozen=True)
class MarketRegime:
    """Classified market condition."""

    regime_type: RegimeType
    strength: float  # 0.0 to 1.0
    confidence: float  # 0.0 to 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime_type": self.regime_type.value,
            "strength": self.strength,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketRegime":
        return cls(
            regime_type=RegimeType(data["regime_type"]),
            strength=data["strength"],
            confidence=data["confidence"],
        )


@dataclass(frozen=True)
class MarketContext:
    """Everything a signal provider needs about one symbol for one cycle."""

    symbol: str
    series: PriceSeries
    indicators: TechnicalIndicators
    regime: MarketRegime

    @property
    def price(self) -> float:
        return self.series.last_price


@dataclass(frozen=True)
class TradingSignal:
    """Unified recommendation produced by every signal provider."""

    action: Action
    confidence: float  # 0.0 to 1.0
    entry_price: float
    stop_loss: float
    take_profit_levels: Tuple[float, ...]
    position_size_usd: float
    leverage: float
    risk_reward_ratio: float
    reasoning: str
    symbol: str = ""
    source: str = ""
    regime: Optional[MarketRegime] = None
    indicators: Optional[TechnicalIndicators] = None
    urgency: Urgency = Urgency.LOW

    def __post_init__(self):
        object.__setattr__(self, "take_profit_levels", tuple(self.take_profit_levels))

    @classmethod
    def hold(
        cls,
        symbol: str,
        price: float,
        reasoning: str,
        source: str = "",
        confidence: float = 0.0,
        regime: Optional[MarketRegime] = None,
        indicators: Optional[TechnicalIndicators] = None,
    ) -> "TradingSignal":
        """Build a Hold signal that carries no sizing."""
        return cls(
            action=Action.HOLD,
            confidence=confidence,
            entry_price=price,
            stop_loss=price,
            take_profit_levels=(),
            position_size_usd=0.0,
            leverage=1.0,
            risk_reward_ratio=0.0,
            reasoning=reasoning,
            symbol=symbol,
            source=source,
            regime=regime,
            indicators=indicators,
        )

    @property
    def side(self) -> Optional[Side]:
        if self.action is Action.LONG:
            return Side.LONG
        if self.action is Action.SHORT:
            return Side.SHORT
        return None

    @property
    def is_entry(self) -> bool:
        return self.action in (Action.LONG, Action.SHORT)

    @property
    def take_profit(self) -> float:
        """First take-profit level, or the entry price when none is set."""
        return self.take_profit_levels[0] if self.take_profit_levels else self.entry_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "confidence": self.confidence,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit_levels": list(self.take_profit_levels),
            "position_size_usd": self.position_size_usd,
            "leverage": self.leverage,
            "risk_reward_ratio": self.risk_reward_ratio,
            "reasoning": self.reasoning,
            "symbol": self.symbol,
            "source": self.source,
            "regime": self.regime.to_dict() if self.regime else None,
            "indicators": self.indicators.to_dict() if self.indicators else None,
            "urgency": self.urgency.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingSignal":
        regime = data.get("regime")
        indicators = data.get("indicators")
        return cls(
            action=Action(data["action"]),
            confidence=data["confidence"],
            entry_price=data["entry_price"],
            stop_loss=data["stop_loss"],
            take_profit_levels=tuple(data.get("take_profit_levels") or ()),
            position_size_usd=data.get("position_size_usd", 0.0),
            leverage=data.get("leverage", 1.0),
            risk_reward_ratio=data.get("risk_reward_ratio", 0.0),
            reasoning=data.get("reasoning", ""),
            symbol=data.get("symbol", ""),
            source=data.get("source", ""),
            regime=MarketRegime.from_dict(regime) if regime else None,
            indicators=TechnicalIndicators.from_dict(indicators) if indicators else None,
            urgency=Urgency(data.get("urgency", Urgency.LOW.value)),
        )


@dataclass
class Agent:
    """Persisted trading agent record."""

    agent_id: str
    name: str
    balance: float
    is_active: bool = True
    symbols: List[str] = field(default_factory=list)
    uses_pooled_balance: bool = False
    max_drawdown_pct: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_pnl: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Agent":
        return cls(
            agent_id=str(data["agent_id"]),
            name=data.get("name", str(data["agent_id"])),
            balance=float(data.get("balance", 0.0)),
            is_active=bool(data.get("is_active", True)),
            symbols=list(data.get("symbols", [])),
            uses_pooled_balance=bool(data.get("uses_pooled_balance", False)),
            max_drawdown_pct=float(data.get("max_drawdown_pct", 0.0)),
            total_trades=int(data.get("total_trades", 0)),
            winning_trades=int(data.get("winning_trades", 0)),
            losing_trades=int(data.get("losing_trades", 0)),
            total_pnl=float(data.get("total_pnl", 0.0)),
        )


@dataclass
class AgentRiskState:
    """Per-agent risk record owned by the circuit breaker's registry."""

    agent_id: str
    initial_capital: float
    current_capital: float
    consecutive_losses: int = 0
    trading_halted: bool = False
    halt_reason: str = ""
    peak_capital: float = 0.0
    tripped: bool = False
    trip_reason: str = ""
    tripped_at: Optional[datetime] = None
    daily_loss_since: Optional[datetime] = None

    def __post_init__(self):
        self.peak_capital = max(self.peak_capital, self.initial_capital, self.current_capital)

    @property
    def drawdown_pct(self) -> float:
        """Decline from peak capital, in percent."""
        if self.peak_capital <= 0:
            return 0.0
        return max(0.0, (self.peak_capital - self.current_capital) / self.peak_capital * 100)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tripped_at"] = self.tripped_at.isoformat() if self.tripped_at else None
        data["daily_loss_since"] = self.daily_loss_since.isoformat() if self.daily_loss_since else None
        data["drawdown_pct"] = self.drawdown_pct
        return data


@dataclass
class OpenPosition:
    """A position that has been filled and not yet closed."""

    trade_id: str
    agent_id: str
    symbol: str
    side: Side
    entry_price: float
    quantity: float
    stop_loss: float
    take_profit: float
    opened_at: datetime
    leverage: float = 1.0
    collateral_usd: float = 0.0

    def unrealized_pnl_pct(self, price: float) -> float:
        """Price move in the position's favour, in percent of entry."""
        if self.entry_price <= 0:
            return 0.0
        return (price - self.entry_price) / self.entry_price * 100 * self.side.sign

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.entry_price) * self.quantity * self.side.sign

    def held_hours(self, now: datetime) -> float:
        return (now - self.opened_at).total_seconds() / 3600

    def stop_loss_hit(self, price: float) -> bool:
        if self.stop_loss <= 0:
            return False
        if self.side is Side.LONG:
            return price <= self.stop_loss
        return price >= self.stop_loss

    def take_profit_hit(self, price: float) -> bool:
        if self.take_profit <= 0:
            return False
        if self.side is Side.LONG:
            return price >= self.take_profit
        return price <= self.take_profit

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        data["opened_at"] = self.opened_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenPosition":
        return cls(
            trade_id=str(data["trade_id"]),
            agent_id=str(data["agent_id"]),
            symbol=data["symbol"],
            side=Side(data["side"]),
            entry_price=float(data["entry_price"]),
            quantity=float(data["quantity"]),
            stop_loss=float(data["stop_loss"]),
            take_profit=float(data["take_profit"]),
            opened_at=datetime.fromisoformat(data["opened_at"]),
            leverage=float(data.get("leverage", 1.0)),
            collateral_usd=float(data.get("collateral_usd", 0.0)),
        )


@dataclass(frozen=True)
class ClosedTrade:
    """Realized result of a closed position."""

    trade_id: str
    agent_id: str
    symbol: str
    side: Side
    entry_price: float
    exit_price: float
    quantity: float
    pnl: float
    opened_at: datetime
    closed_at: datetime
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        data["opened_at"] = self.opened_at.isoformat()
        data["closed_at"] = self.closed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosedTrade":
        return cls(
            trade_id=str(data["trade_id"]),
            agent_id=str(data["agent_id"]),
            symbol=data["symbol"],
            side=Side(data["side"]),
            entry_price=float(data["entry_price"]),
            exit_price=float(data["exit_price"]),
            quantity=float(data["quantity"]),
            pnl=float(data["pnl"]),
            opened_at=datetime.fromisoformat(data["opened_at"]),
            closed_at=datetime.fromisoformat(data["closed_at"]),
            reason=data.get("reason", ""),
        )


@dataclass(frozen=True)
class TradeStats:
    """Win/loss statistics over an agent's recent closed trades."""

    win_rate: float = 0.5
    avg_win: float = 0.0
    avg_loss: float = 0.0
    sample_size: int = 0

    @classmethod
    def from_trades(cls, trades: Sequence[ClosedTrade]) -> "TradeStats":
        """
        Compute statistics; defaults to 50% / 0 / 0 with no history.

        Args:
            trades: Closed trades, most recent first

        Returns:
            TradeStats
        """
        if not trades:
            return cls()
        wins = [t.pnl for t in trades if t.pnl > 0]
        losses = [abs(t.pnl) for t in trades if t.pnl < 0]
        return cls(
            win_rate=len(wins) / len(trades),
            avg_win=sum(wins) / len(wins) if wins else 0.0,
            avg_loss=sum(losses) / len(losses) if losses else 0.0,
            sample_size=len(trades),
        )


@dataclass(frozen=True)
class OrderResult:
    """Fill report returned by an execution client."""

    order_id: Optional[str]
    executed_qty: float
    executed_price: float
    status: str = ""


@dataclass
class RiskCheckResult:
    """Outcome of a circuit breaker check."""

    allowed: bool
    reasons: List[str] = field(default_factory=list)
    severity: Severity = Severity.LOW
    tripped: bool = False

    @property
    def reason_text(self) -> str:
        return "; ".join(self.reasons) if self.reasons else "allowed"


@dataclass(frozen=True)
class SizingResult:
    """Collateral and leverage chosen for a trade."""

    collateral_usd: float
    leverage: float
    kelly_fraction: float = 0.0
    reason: str = ""

    @property
    def notional_usd(self) -> float:
        return self.collateral_usd * self.leverage

    @property
    def is_tradeable(self) -> bool:
        return self.collateral_usd > 0


@dataclass(frozen=True)
class CloseDecision:
    """Instruction to close one open position."""

    position: OpenPosition
    reason: str
    pnl_pct: float
    price: float


@dataclass
class AgentOutcome:
    """Result of running the pipeline for one agent in one cycle."""

    agent_id: str
    status: str  # "executed" | "closed" | "hold" | "rejected" | "error"
    reason: str
    symbol: Optional[str] = None
    trade_id: Optional[str] = None
    signal: Optional[TradingSignal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "status": self.status,
            "reason": self.reason,
            "symbol": self.symbol,
            "trade_id": self.trade_id,
            "signal": self.signal.to_dict() if self.signal else None,
        }


@dataclass
class CycleSummary:
    """Aggregate outcome of one scheduler cycle."""

    cycle_number: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    positions_checked: int = 0
    positions_closed: int = 0
    outcomes: List[AgentOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    def _count(self, *statuses: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status in statuses)

    @property
    def successful(self) -> int:
        return self._count("executed", "closed")

    @property
    def held(self) -> int:
        return self._count("hold", "rejected")

    @property
    def failed(self) -> int:
        return self._count("error")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_number": self.cycle_number,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "positions_checked": self.positions_checked,
            "positions_closed": self.positions_closed,
            "agents_processed": len(self.outcomes),
            "successful": self.successful,
            "held": self.held,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass
class SchedulerStatus:
    """Snapshot of the scheduler's counters."""

    is_running: bool
    interval_minutes: float
    last_cycle_time: Optional[datetime]
    next_cycle_time: Optional[datetime]
    cycles_completed: int
    cycles_skipped: int
    successful_trades: int
    failed_trades: int
    total_trades_attempted: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_cycle_time"] = self.last_cycle_time.isoformat() if self.last_cycle_time else None
        data["next_cycle_time"] = self.next_cycle_time.isoformat() if self.next_cycle_time else None
        return data
