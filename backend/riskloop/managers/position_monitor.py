"""Open-position monitoring and exit rules."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from riskloop.circuit_breaker import RiskRegistry
from riskloop.config import MonitorConfig
from riskloop.errors import InsufficientHistory, PriceNotFound, ProviderUnavailable
from riskloop.interfaces import Persistence
from riskloop.market_data import MarketDataService
from riskloop.models import ClosedTrade, CloseDecision, MarketRegime, OpenPosition, utc_now
from riskloop.regime_classifier import is_reversal_against
from riskloop.services.alert_service import AlertService
from riskloop.trade_executor import EXECUTION_ERRORS, TradeExecutor

logger = logging.getLogger(__name__)


@dataclass
class MonitorReport:
    """Result of one pass over all open positions."""

    checked: int = 0
    closed: int = 0
    errors: List[str] = field(default_factory=list)
    decisions: List[CloseDecision] = field(default_factory=list)
    closed_trades: List[ClosedTrade] = field(default_factory=list)


class PositionMonitor:
    """
    Checks every open position once per cycle and closes those that hit an exit rule.

    Rules, first match wins:
    1. Excellent profit (>= 8%)
    2. Great profit (>= 5%)
    3. Hard stop-loss or take-profit touch
    4. Tightened stop (<= -2.5%)
    5. Held >= 24h with >= 3% profit
    6. Held >= 48h regardless of P&L
    7. Regime reversal against the position with strength > 0.7
    """

    def __init__(
        self,
        persistence: Persistence,
        market_data: MarketDataService,
        executor: TradeExecutor,
        registry: RiskRegistry,
        alerts: Optional[AlertService] = None,
        config: Optional[MonitorConfig] = None,
        pacing_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize position monitor.

        Args:
            persistence: Trade and agent store
            market_data: Price and regime source
            executor: Places closing orders
            registry: Per-agent risk state, updated on every close
            alerts: Alert service for close notifications
            config: Exit rule thresholds
            pacing_seconds: Delay between positions to respect rate limits
            sleep: Sleep function used for pacing
        """
        self.persistence = persistence
        self.market_data = market_data
        self.executor = executor
        self.registry = registry
        self.alerts = alerts or AlertService()
        self.config = config or MonitorConfig()
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep

    def evaluate(
        self,
        position: OpenPosition,
        price: float,
        regime: Optional[MarketRegime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[CloseDecision]:
        """
        Apply the exit rules to one position.

        Args:
            position: Open position
            price: Current market price
            regime: Current regime for the symbol, if it could be computed
            now: Evaluation time (default: now)

        Returns:
            CloseDecision for the first rule that matches, or None to keep holding
        """
        cfg = self.config
        now = now or utc_now()
        pnl_pct = position.unrealized_pnl_pct(price)
        held_hours = position.held_hours(now)

        reason = None
        if pnl_pct >= cfg.excellent_profit_pct:
            reason = f"excellent profit ({pnl_pct:+.2f}%)"
        elif pnl_pct >= cfg.great_profit_pct:
            reason = f"great profit ({pnl_pct:+.2f}%)"
        elif position.stop_loss_hit(price):
            reason = f"stop loss hit at ${price:,.4f} (SL ${position.stop_loss:,.4f})"
        elif position.take_profit_hit(price):
            reason = f"take profit hit at ${price:,.4f} (TP ${position.take_profit:,.4f})"
        elif pnl_pct <= cfg.tight_stop_pct:
            reason = f"tightened stop ({pnl_pct:+.2f}%)"
        elif held_hours >= cfg.time_exit_hours and pnl_pct >= cfg.time_exit_min_profit_pct:
            reason = f"time exit after {held_hours:.1f}h with {pnl_pct:+.2f}%"
        elif held_hours >= cfg.max_hold_hours:
            reason = f"max holding time reached ({held_hours:.1f}h, {pnl_pct:+.2f}%)"
        elif regime is not None and is_reversal_against(position.side, regime, cfg.regime_reversal_strength):
            reason = f"regime reversal to {regime.regime_type.value} (strength {regime.strength:.2f})"

        if reason is None:
            return None
        return CloseDecision(position=position, reason=reason, pnl_pct=pnl_pct, price=price)

    def run(self, now: Optional[datetime] = None) -> MonitorReport:
        """
        Evaluate and close open positions across all agents.

        Per-position failures are logged and reported without stopping the pass.

        Args:
            now: Evaluation time (default: now)

        Returns:
            MonitorReport
        """
        now = now or utc_now()
        report = MonitorReport()
        positions = self.persistence.load_open_positions()
        if not positions:
            return report

        logger.info(f"Monitoring {len(positions)} open position(s)")
        regimes: Dict[str, Optional[MarketRegime]] = {}

        for index, position in enumerate(positions):
            if index and self.pacing_seconds > 0:
                self._sleep(self.pacing_seconds)
            report.checked += 1
            try:
                price = self.market_data.current_price(position.symbol)
                if position.symbol not in regimes:
                    regimes[position.symbol] = self._regime_for(position.symbol)
                decision = self.evaluate(position, price, regimes[position.symbol], now)
            except (ProviderUnavailable, PriceNotFound) as e:
                logger.warning(f"Skipping position {position.trade_id} ({position.symbol}): {e}")
                report.errors.append(f"{position.trade_id}: {e}")
                continue
            except Exception as e:
                logger.error(f"[ERROR] Unexpected error monitoring trade {position.trade_id}: {e}", exc_info=True)
                report.errors.append(f"{position.trade_id}: {e}")
                continue

            if decision is None:
                logger.debug(
                    f"Holding {position.side.value} {position.symbol} (trade {position.trade_id}): "
                    f"{position.unrealized_pnl_pct(price):+.2f}%"
                )
                continue

            report.decisions.append(decision)
            try:
                report.closed_trades.append(self.close_position(decision, now))
                report.closed += 1
            except EXECUTION_ERRORS as e:
                # The exit still stands; it is retried next cycle
                logger.error(f"[ERROR] Close failed for trade {position.trade_id} ({decision.reason}): {e}")
                self.alerts.execution_failure(position.agent_id, position.symbol, str(e))
                report.errors.append(f"{position.trade_id}: {e}")
            except Exception as e:
                logger.error(f"[ERROR] Unexpected error closing trade {position.trade_id}: {e}", exc_info=True)
                report.errors.append(f"{position.trade_id}: {e}")

        if report.closed:
            logger.info(f"[OK] Position monitor closed {report.closed}/{report.checked} position(s)")
        return report

    def close_position(self, decision: CloseDecision, now: Optional[datetime] = None) -> ClosedTrade:
        """
        Close a position and feed the realized P&L back into agent and risk state.

        The close, the trade record and the risk-state update all happen under
        the agent's lock so a concurrent risk check sees either none or all of it.

        Args:
            decision: What to close and why
            now: Close time (default: now)

        Returns:
            The realized trade record

        Raises:
            InvalidExecutionResult: If the closing fill is malformed
            ProviderUnavailable: If the venue cannot be reached
            PriceNotFound: If the venue does not know the symbol
        """
        now = now or utc_now()
        position = decision.position

        with self.registry.agent_lock(position.agent_id):
            order = self.executor.close_position(position)
            exit_price = order.executed_price
            pnl = position.unrealized_pnl(exit_price)
            trade = self.persistence.update_trade_on_close(
                position.trade_id, exit_price, pnl, decision.reason, now
            )

            agent = self.persistence.load_agent(position.agent_id)
            agent_name = position.agent_id
            if agent is not None:
                agent_name = agent.name
                self.registry.get_or_create(agent.agent_id, agent.balance)
                state = self.registry.record_closed_trade(agent.agent_id, pnl, agent.balance + pnl)

                agent.balance += pnl
                agent.total_pnl += pnl
                agent.total_trades += 1
                if pnl > 0:
                    agent.winning_trades += 1
                elif pnl < 0:
                    agent.losing_trades += 1
                agent.max_drawdown_pct = max(agent.max_drawdown_pct, state.drawdown_pct)
                self.persistence.save_agent(agent)
            else:
                logger.warning(f"Closed trade {position.trade_id} belongs to unknown agent {position.agent_id}")

        logger.info(
            f"[CLOSE] {position.side.value} {position.symbol} for {agent_name}: "
            f"${position.entry_price:,.4f} -> ${exit_price:,.4f}, P&L ${pnl:+.2f} ({decision.reason})"
        )
        self.alerts.position_closed(agent_name, trade)
        return trade

    def _regime_for(self, symbol: str) -> Optional[MarketRegime]:
        try:
            return self.market_data.build_context(symbol).regime
        except (InsufficientHistory, ProviderUnavailable, PriceNotFound) as e:
            logger.debug(f"No regime for {symbol}: {e}")
            return None
