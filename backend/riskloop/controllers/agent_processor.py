"""Per-agent analyze, decide, size, risk-check and execute pipeline."""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from riskloop.arbitrator import ArbitrationResult, SignalArbitrator
from riskloop.circuit_breaker import CircuitBreaker
from riskloop.config import SizingConfig
from riskloop.errors import InsufficientHistory, PriceNotFound, ProviderUnavailable
from riskloop.interfaces import Persistence
from riskloop.managers.position_monitor import PositionMonitor
from riskloop.market_data import MarketDataService
from riskloop.models import (
    Action,
    Agent,
    AgentOutcome,
    CloseDecision,
    MarketContext,
    OpenPosition,
    TradeStats,
    TradingSignal,
    utc_now,
)
from riskloop.position_sizer import PositionSizer
from riskloop.services.alert_service import AlertService
from riskloop.trade_executor import EXECUTION_ERRORS, TradeExecutor

logger = logging.getLogger(__name__)


class AgentProcessor:
    """Runs one agent through the decision pipeline for one cycle."""

    def __init__(
        self,
        persistence: Persistence,
        market_data: MarketDataService,
        arbitrator: SignalArbitrator,
        sizer: PositionSizer,
        circuit_breaker: CircuitBreaker,
        executor: TradeExecutor,
        monitor: PositionMonitor,
        alerts: Optional[AlertService] = None,
        default_symbols: Optional[List[str]] = None,
    ):
        """
        Initialize agent processor.

        Args:
            persistence: Agent and trade store
            market_data: Builds per-symbol market context
            arbitrator: Signal priority ladder
            sizer: Collateral and leverage sizing
            circuit_breaker: Risk guardrail consulted before every trade
            executor: Places orders
            monitor: Used to close positions when the final signal is CLOSE
            alerts: Alert service
            default_symbols: Symbols for agents that do not list their own
        """
        self.persistence = persistence
        self.market_data = market_data
        self.arbitrator = arbitrator
        self.sizer = sizer
        self.circuit_breaker = circuit_breaker
        self.executor = executor
        self.monitor = monitor
        self.alerts = alerts or AlertService()
        self.default_symbols = default_symbols or []

    @property
    def sizing_config(self) -> SizingConfig:
        return self.sizer.config

    def process(self, agent: Agent, now: Optional[datetime] = None) -> AgentOutcome:
        """
        Run the pipeline for one agent.

        Every path returns an AgentOutcome with a reason; nothing is dropped silently.

        Args:
            agent: Agent to process
            now: Cycle time (default: now)

        Returns:
            AgentOutcome
        """
        now = now or utc_now()

        blocked = self._blocked_reason(agent.agent_id)
        if blocked:
            logger.info(f"[HOLD] Agent {agent.name}: {blocked}")
            return AgentOutcome(agent.agent_id, "rejected", blocked)

        open_positions = {p.symbol: p for p in self.persistence.load_open_positions(agent.agent_id)}
        available = self.available_balance(agent, open_positions.values())

        decisions = self._analyze_symbols(agent, available, open_positions)
        if not decisions:
            return AgentOutcome(agent.agent_id, "hold", "No market data available for any symbol")

        for context, result in decisions:
            position = open_positions.get(context.symbol)
            if result.signal.action is Action.CLOSE and position is not None:
                return self._close(agent, position, context, result.signal, now)

        entries = [
            (context, result) for context, result in decisions
            if result.signal.is_entry and context.symbol not in open_positions
        ]
        if not entries:
            reasons = "; ".join(f"{c.symbol}: {self._hold_reason(r, c.symbol in open_positions)}" for c, r in decisions)
            logger.info(f"[HOLD] Agent {agent.name}: {reasons}")
            return AgentOutcome(agent.agent_id, "hold", reasons)

        context, result = max(entries, key=lambda item: item[1].signal.confidence)
        return self._open(agent, available, context, result, now)

    def available_balance(self, agent: Agent, open_positions) -> float:
        """Balance minus collateral tied up in the agent's open positions."""
        committed = sum(p.collateral_usd for p in open_positions)
        return max(0.0, agent.balance - committed)

    def _blocked_reason(self, agent_id: str) -> Optional[str]:
        if self.circuit_breaker.is_emergency_stopped():
            return "Global emergency stop is active"
        if self.circuit_breaker.is_tripped(agent_id):
            return "Circuit breaker tripped for this agent"
        state = self.circuit_breaker.get_agent_risk_status(agent_id)
        if state is not None and state.trading_halted:
            return f"Trading halted: {state.halt_reason}"
        return None

    def _analyze_symbols(
        self, agent: Agent, available: float, open_positions: Dict[str, OpenPosition]
    ) -> List[Tuple[MarketContext, ArbitrationResult]]:
        decisions = []
        for symbol in agent.symbols or self.default_symbols:
            try:
                context = self.market_data.build_context(symbol)
            except (InsufficientHistory, ProviderUnavailable, PriceNotFound) as e:
                logger.warning(f"Skipping {symbol} for agent {agent.name}: {e}")
                continue
            result = self.arbitrator.decide(context, available, open_positions.get(symbol))
            decisions.append((context, result))
        return decisions

    @staticmethod
    def _hold_reason(result: ArbitrationResult, held: bool) -> str:
        signal = result.signal
        if signal.is_entry and held:
            return f"{signal.action.value} ignored, position already open"
        if signal.action is Action.CLOSE and not held:
            return "CLOSE ignored, no open position"
        return signal.reasoning

    def _close(
        self,
        agent: Agent,
        position: OpenPosition,
        context: MarketContext,
        signal: TradingSignal,
        now: datetime,
    ) -> AgentOutcome:
        decision = CloseDecision(
            position=position,
            reason=f"{signal.source} signal: {signal.reasoning}",
            pnl_pct=position.unrealized_pnl_pct(context.price),
            price=context.price,
        )
        try:
            trade = self.monitor.close_position(decision, now)
        except EXECUTION_ERRORS as e:
            logger.error(f"[ERROR] Close of {position.symbol} for {agent.name} failed: {e}")
            self.alerts.execution_failure(agent.agent_id, position.symbol, str(e))
            return AgentOutcome(agent.agent_id, "error", str(e), symbol=position.symbol, signal=signal)
        return AgentOutcome(
            agent.agent_id,
            "closed",
            f"Closed {position.side.value} with P&L ${trade.pnl:+.2f}",
            symbol=position.symbol,
            trade_id=trade.trade_id,
            signal=signal,
        )

    def _open(
        self,
        agent: Agent,
        available: float,
        context: MarketContext,
        result: ArbitrationResult,
        now: datetime,
    ) -> AgentOutcome:
        signal = result.signal
        symbol = context.symbol
        cb_config = self.circuit_breaker.config

        stats = TradeStats.from_trades(
            self.persistence.load_recent_closed_trades(agent.agent_id, limit=self.sizing_config.stats_window)
        )
        sizing = self.sizer.size(
            signal,
            balance=available,
            stats=stats,
            volatility_pct=context.indicators.volatility_pct,
            max_trade_usd=cb_config.max_trade_usd,
            pooled=agent.uses_pooled_balance,
            embedded=result.embeds_size,
        )
        if not sizing.is_tradeable:
            logger.info(f"[HOLD] Agent {agent.name} {symbol}: {sizing.reason}")
            return AgentOutcome(agent.agent_id, "hold", sizing.reason, symbol=symbol, signal=signal)

        with self.circuit_breaker.registry.agent_lock(agent.agent_id):
            risk = self.circuit_breaker.can_trade(agent.agent_id, sizing.collateral_usd, agent.balance, now)
            if not risk.allowed:
                if risk.tripped:
                    self.alerts.risk_trip(agent.agent_id, risk.reasons)
                return AgentOutcome(agent.agent_id, "rejected", risk.reason_text, symbol=symbol, signal=signal)

            # Operator commands may land between the risk check and the order
            blocked = self._blocked_reason(agent.agent_id)
            if blocked:
                logger.warning(f"[REJECTED] Agent {agent.name} {symbol}: {blocked}")
                return AgentOutcome(agent.agent_id, "rejected", blocked, symbol=symbol, signal=signal)

            quantity = sizing.notional_usd / context.price
            try:
                order = self.executor.open_position(symbol, signal.side, quantity)
            except EXECUTION_ERRORS as e:
                logger.error(f"[ERROR] Execution failed for {agent.name} {symbol}: {e}")
                self.alerts.execution_failure(agent.agent_id, symbol, str(e))
                return AgentOutcome(agent.agent_id, "error", str(e), symbol=symbol, signal=signal)

            position = OpenPosition(
                trade_id="",
                agent_id=agent.agent_id,
                symbol=symbol,
                side=signal.side,
                entry_price=order.executed_price,
                quantity=order.executed_qty,
                stop_loss=signal.stop_loss,
                take_profit=signal.take_profit,
                opened_at=now,
                leverage=sizing.leverage,
                collateral_usd=sizing.collateral_usd,
            )
            trade_id = self.persistence.record_trade(position, signal)

        logger.info(
            f"[OK] Agent {agent.name} opened {signal.action.value} {symbol}: "
            f"${sizing.collateral_usd:.2f} @ {sizing.leverage:.1f}x via {result.tier} tier (trade {trade_id})"
        )
        self.alerts.trade_executed(agent.name, signal, sizing, order)
        return AgentOutcome(
            agent.agent_id,
            "executed",
            f"{signal.action.value} ${sizing.collateral_usd:.2f} @ {sizing.leverage:.1f}x ({result.tier})",
            symbol=symbol,
            trade_id=trade_id,
            signal=signal,
        )
