"""In-process stand-ins for the external collaborators and synthetic price series."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence

from riskloop.arbitrator import ArbitrationTier, SignalArbitrator
from riskloop.circuit_breaker import CircuitBreaker, RiskRegistry
from riskloop.config import CircuitBreakerConfig
from riskloop.controllers.agent_processor import AgentProcessor
from riskloop.controllers.cycle_controller import CycleController
from riskloop.errors import PriceNotFound, ProviderUnavailable
from riskloop.indicators.indicator_engine import IndicatorEngine
from riskloop.interfaces import AlertSink, ExecutionClient, PriceFeed, TextCompletionProvider
from riskloop.managers.position_monitor import PositionMonitor
from riskloop.market_data import MarketDataService
from riskloop.memory.in_memory_store import InMemoryPersistence
from riskloop.models import (
    Action,
    Agent,
    BollingerBands,
    ClosedTrade,
    EMAValues,
    MACDValues,
    MarketContext,
    MarketRegime,
    OpenPosition,
    OrderResult,
    PriceSeries,
    RegimeType,
    Side,
    TechnicalIndicators,
    TradingSignal,
)
from riskloop.position_sizer import PositionSizer
from riskloop.regime_classifier import RegimeClassifier
from riskloop.services.alert_service import AlertService
from riskloop.strategies.base import SignalProvider
from riskloop.trade_executor import TradeExecutor

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)
STEP_MS = 300_000


def series_from(prices: Sequence[float], symbol: str = "BTC/USDT", volumes: Optional[Sequence[float]] = None) -> PriceSeries:
    """Series whose last point lands on NOW."""
    start = NOW_MS - (len(prices) - 1) * STEP_MS
    return PriceSeries.from_values(symbol, prices, volumes, start_ms=start, step_ms=STEP_MS)


def uptrend_prices(n: int = 250, start: float = 100.0, step_pct: float = 0.002) -> List[float]:
    return [start * (1 + step_pct) ** i for i in range(n)]


def downtrend_prices(n: int = 250, start: float = 100.0, step_pct: float = 0.002) -> List[float]:
    return [start * (1 - step_pct) ** i for i in range(n)]


def volatile_prices(n: int = 250, low: float = 100.0, high: float = 106.0) -> List[float]:
    return [low if i % 2 == 0 else high for i in range(n)]


def make_context(series: PriceSeries) -> MarketContext:
    indicators = IndicatorEngine().compute(series)
    regime = RegimeClassifier().classify(series, indicators)
    return MarketContext(symbol=series.symbol, series=series, indicators=indicators, regime=regime)


def make_agent(agent_id: str = "agent-1", balance: float = 100.0, **kwargs) -> Agent:
    kwargs.setdefault("symbols", ["BTC/USDT"])
    return Agent(agent_id=agent_id, name=kwargs.pop("name", agent_id.title()), balance=balance, **kwargs)


def make_position(
    trade_id: str = "trade-1",
    agent_id: str = "agent-1",
    symbol: str = "BTC/USDT",
    side: Side = Side.LONG,
    entry_price: float = 100.0,
    quantity: float = 1.0,
    stop_loss: Optional[float] = None,
    take_profit: Optional[float] = None,
    opened_at: Optional[datetime] = None,
    collateral_usd: float = 20.0,
) -> OpenPosition:
    if stop_loss is None:
        stop_loss = entry_price * (0.9 if side is Side.LONG else 1.1)
    if take_profit is None:
        take_profit = entry_price * (1.2 if side is Side.LONG else 0.8)
    return OpenPosition(
        trade_id=trade_id,
        agent_id=agent_id,
        symbol=symbol,
        side=side,
        entry_price=entry_price,
        quantity=quantity,
        stop_loss=stop_loss,
        take_profit=take_profit,
        opened_at=opened_at or NOW - timedelta(hours=1),
        collateral_usd=collateral_usd,
    )


def make_closed_trade(pnl: float, agent_id: str = "agent-1", closed_at: Optional[datetime] = None, trade_id: str = "") -> ClosedTrade:
    closed_at = closed_at or NOW - timedelta(hours=1)
    return ClosedTrade(
        trade_id=trade_id or f"closed-{pnl}-{closed_at.timestamp()}",
        agent_id=agent_id,
        symbol="BTC/USDT",
        side=Side.LONG,
        entry_price=100.0,
        exit_price=100.0 + pnl,
        quantity=1.0,
        pnl=pnl,
        opened_at=closed_at - timedelta(hours=2),
        closed_at=closed_at,
    )


class FakePriceFeed(PriceFeed):
    """Serves fixed series; current price defaults to the series' last price."""

    def __init__(self, series: Optional[Dict[str, PriceSeries]] = None, prices: Optional[Dict[str, float]] = None):
        self.series = dict(series or {})
        self.prices = dict(prices or {})
        self.unavailable_calls = 0
        self.calls: List[str] = []

    def _maybe_fail(self, symbol: str) -> None:
        self.calls.append(symbol)
        if self.unavailable_calls > 0:
            self.unavailable_calls -= 1
            raise ProviderUnavailable("price_feed", "simulated outage")

    def get_history(self, symbol: str, lookback: int) -> PriceSeries:
        self._maybe_fail(symbol)
        if symbol not in self.series:
            raise PriceNotFound(symbol)
        return self.series[symbol]

    def get_current_price(self, symbol: str) -> float:
        self._maybe_fail(symbol)
        if symbol in self.prices:
            return self.prices[symbol]
        if symbol in self.series:
            return self.series[symbol].last_price
        raise PriceNotFound(symbol)


class FakeCompletion(TextCompletionProvider):
    """Returns queued responses; an Exception in the queue is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: List[str] = []

    def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 800) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakeExecution(ExecutionClient):
    """Fills at a fixed or feed price; can be told to return a broken fill or raise."""

    def __init__(self, price_feed: Optional[PriceFeed] = None, fill_price: Optional[float] = None):
        self.price_feed = price_feed
        self.fill_price = fill_price
        self.broken_fill = False
        self.error: Optional[Exception] = None
        self.orders: List[tuple] = []

    def place_market_order(self, symbol: str, side: Side, quantity: float) -> OrderResult:
        self.orders.append((symbol, side, quantity))
        if self.error is not None:
            raise self.error
        if self.broken_fill:
            return OrderResult(order_id="bad", executed_qty=0.0, executed_price=0.0, status="closed")
        price = self.fill_price if self.fill_price is not None else self.price_feed.get_current_price(symbol)
        return OrderResult(order_id=f"order-{len(self.orders)}", executed_qty=quantity, executed_price=price, status="closed")


class RecordingAlertSink(AlertSink):
    def __init__(self, fail: bool = False):
        self.messages: List[str] = []
        self.fail = fail

    def notify(self, message: str) -> None:
        if self.fail:
            raise RuntimeError("alert channel down")
        self.messages.append(message)


def make_indicators(**overrides) -> TechnicalIndicators:
    """Neutral indicator set around a price of 100; override any field."""
    values = dict(
        rsi=50.0,
        macd=MACDValues(value=0.0, signal=0.0, histogram=0.0),
        bollinger=BollingerBands(upper=102.0, middle=100.0, lower=98.0, width=0.04),
        ema=EMAValues(ema9=100.0, ema21=100.0, ema50=100.0, ema200=100.0),
        volume_ratio=1.0,
        momentum=0.0,
        volatility_pct=1.0,
    )
    values.update(overrides)
    return TechnicalIndicators(**values)


def make_regime(regime_type: RegimeType = RegimeType.RANGING, strength: float = 0.5, confidence: float = 0.7) -> MarketRegime:
    return MarketRegime(regime_type=regime_type, strength=strength, confidence=confidence)


def context_with(
    indicators: TechnicalIndicators,
    regime: Optional[MarketRegime] = None,
    prices: Optional[Sequence[float]] = None,
    symbol: str = "BTC/USDT",
) -> MarketContext:
    """Context with hand-picked indicators; the series only supplies the price."""
    series = series_from(prices or [100.0] * 250, symbol=symbol)
    return MarketContext(symbol=symbol, series=series, indicators=indicators, regime=regime or make_regime())


class StubProvider(SignalProvider):
    """Provider returning a fixed action; confidence may differ per symbol."""

    def __init__(self, name, action=Action.HOLD, confidence=0.0, error=None, embeds_size=False, by_symbol=None, **overrides):
        self.name = name
        self.action = action
        self.confidence = confidence
        self.error = error
        self.embeds_size = embeds_size
        self.by_symbol = by_symbol or {}
        self.overrides = overrides
        self.calls = 0

    def analyze(self, context, balance, current_position=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        confidence = self.by_symbol.get(context.symbol, self.confidence)
        if self.action is Action.HOLD:
            return TradingSignal.hold(context.symbol, context.price, "stub hold", source=self.name, confidence=confidence)
        signal = TradingSignal(
            action=self.action,
            confidence=confidence,
            entry_price=context.price,
            stop_loss=context.price * (0.97 if self.action is not Action.SHORT else 1.03),
            take_profit_levels=(context.price * (1.05 if self.action is not Action.SHORT else 0.95),),
            position_size_usd=10.0,
            leverage=3.0,
            risk_reward_ratio=1.67,
            reasoning=f"{self.name} says {self.action.value}",
            symbol=context.symbol,
            source=self.name,
        )
        return replace(signal, **self.overrides)


def build_loop(provider: SignalProvider, agents=(), series=None, prices=None, sleep=None):
    """Wire the real pipeline around fakes with a single-tier arbitrator."""
    persistence = InMemoryPersistence()
    for agent in agents:
        persistence.save_agent(agent)
    if series is None:
        series = {"BTC/USDT": series_from([100.0] * 250)}
    feed = FakePriceFeed(series=series, prices=prices)
    execution = FakeExecution(feed)
    sink = RecordingAlertSink()
    alerts = AlertService([sink])
    market_data = MarketDataService(feed)
    registry = RiskRegistry()
    breaker = CircuitBreaker(CircuitBreakerConfig(), persistence, registry)
    executor = TradeExecutor(execution)
    monitor = PositionMonitor(persistence, market_data, executor, registry, alerts=alerts, sleep=sleep or (lambda s: None))
    arbitrator = SignalArbitrator([ArbitrationTier(provider.name, provider, 0.45)])
    processor = AgentProcessor(
        persistence, market_data, arbitrator, PositionSizer(), breaker, executor, monitor,
        alerts=alerts, default_symbols=["BTC/USDT"],
    )
    controller = CycleController(
        persistence, monitor, processor, breaker, alerts=alerts, sleep=sleep or (lambda s: None)
    )
    return SimpleNamespace(
        persistence=persistence,
        feed=feed,
        execution=execution,
        sink=sink,
        registry=registry,
        breaker=breaker,
        monitor=monitor,
        processor=processor,
        controller=controller,
    )
