"""Circuit breaker and per-agent risk registry."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from riskloop.config import CircuitBreakerConfig
from riskloop.interfaces import Persistence
from riskloop.models import AgentRiskState, RiskCheckResult, Severity, utc_now

logger = logging.getLogger(__name__)


class RiskRegistry:
    """
    Thread-safe map of agent id to AgentRiskState.

    Every read or write of one agent's state happens under that agent's lock,
    so a position close and a new-trade risk check cannot interleave.
    """

    def __init__(self, max_consecutive_losses: int = 5, halt_drawdown_percent: float = 20.0):
        self.max_consecutive_losses = max_consecutive_losses
        self.halt_drawdown_percent = halt_drawdown_percent
        self._states: Dict[str, AgentRiskState] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, agent_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(agent_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[agent_id] = lock
            return lock

    @contextmanager
    def agent_lock(self, agent_id: str) -> Iterator[None]:
        """Hold an agent's lock across a multi-step read/modify/write."""
        lock = self._lock_for(agent_id)
        with lock:
            yield

    def get_or_create(self, agent_id: str, capital: float) -> AgentRiskState:
        """Return the live state, creating it from `capital` on first use."""
        with self.agent_lock(agent_id):
            state = self._states.get(agent_id)
            if state is None:
                state = AgentRiskState(agent_id=agent_id, initial_capital=capital, current_capital=capital)
                self._states[agent_id] = state
                logger.info(f"Risk state created for agent {agent_id} with ${capital:.2f}")
            return state

    def snapshot(self, agent_id: str) -> Optional[AgentRiskState]:
        """Copy of the agent's state, or None if never seen."""
        with self.agent_lock(agent_id):
            state = self._states.get(agent_id)
            return replace(state) if state else None

    def agent_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._states)

    def record_closed_trade(self, agent_id: str, pnl: float, capital_after: float) -> AgentRiskState:
        """
        Apply a realized P&L to the agent's state.

        Halts trading after max_consecutive_losses losses in a row or a
        drawdown above halt_drawdown_percent from peak capital.

        Args:
            agent_id: Agent identifier
            pnl: Realized profit/loss in USD
            capital_after: Agent balance after the close

        Returns:
            Copy of the updated state
        """
        with self.agent_lock(agent_id):
            state = self._states.get(agent_id)
            if state is None:
                state = AgentRiskState(
                    agent_id=agent_id,
                    initial_capital=capital_after - pnl,
                    current_capital=capital_after - pnl,
                )
                self._states[agent_id] = state

            state.current_capital = capital_after
            state.peak_capital = max(state.peak_capital, capital_after)
            if pnl < 0:
                state.consecutive_losses += 1
            elif pnl > 0:
                state.consecutive_losses = 0

            if not state.trading_halted:
                if state.consecutive_losses >= self.max_consecutive_losses:
                    state.trading_halted = True
                    state.halt_reason = f"{state.consecutive_losses} consecutive losses"
                elif state.drawdown_pct > self.halt_drawdown_percent:
                    state.trading_halted = True
                    state.halt_reason = f"Drawdown {state.drawdown_pct:.1f}% exceeds {self.halt_drawdown_percent:.0f}%"
                if state.trading_halted:
                    logger.warning(f"[HALTED] Agent {agent_id}: {state.halt_reason}")

            return replace(state)

    def trip(self, agent_id: str, reason: str, now: Optional[datetime] = None) -> bool:
        """
        Mark the agent tripped.

        Returns:
            True if the agent was not tripped before
        """
        with self.agent_lock(agent_id):
            state = self._states.get(agent_id)
            if state is None:
                state = AgentRiskState(agent_id=agent_id, initial_capital=0.0, current_capital=0.0)
                self._states[agent_id] = state
            if state.tripped:
                return False
            state.tripped = True
            state.trip_reason = reason
            state.tripped_at = now or utc_now()
            return True

    def reset(self, agent_id: str, now: Optional[datetime] = None) -> None:
        """Clear the tripped flag, the trading halt and daily-loss tracking."""
        with self.agent_lock(agent_id):
            state = self._states.get(agent_id)
            if state is None:
                return
            state.tripped = False
            state.trip_reason = ""
            state.tripped_at = None
            state.trading_halted = False
            state.halt_reason = ""
            state.consecutive_losses = 0
            state.daily_loss_since = now or utc_now()

    def is_tripped(self, agent_id: str) -> bool:
        with self.agent_lock(agent_id):
            state = self._states.get(agent_id)
            return bool(state and state.tripped)


class CircuitBreaker:
    """
    Per-agent risk guardrail plus a process-wide emergency stop.

    Agents move Active -> Tripped on a daily-loss or drawdown breach and stay
    tripped until reset_agent(). The emergency stop is independent of agent
    state and cleared only by resume().
    """

    DAILY_WINDOW = timedelta(hours=24)

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        persistence: Optional[Persistence] = None,
        registry: Optional[RiskRegistry] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            config: Thresholds (defaults applied if omitted)
            persistence: Source of closed trades, open positions and agent drawdown
            registry: Per-agent risk state store
        """
        self._config = replace(config) if config else CircuitBreakerConfig()
        self._config_lock = threading.Lock()
        self.persistence = persistence
        self.registry = registry or RiskRegistry()
        self._apply_halt_thresholds(self._config)
        self._emergency = threading.Event()
        if self._config.emergency_stop:
            self._emergency.set()

    def _apply_halt_thresholds(self, config: CircuitBreakerConfig) -> None:
        self.registry.max_consecutive_losses = config.max_consecutive_losses
        self.registry.halt_drawdown_percent = config.halt_drawdown_percent

    @property
    def config(self) -> CircuitBreakerConfig:
        with self._config_lock:
            return replace(self._config, emergency_stop=self._emergency.is_set())

    def can_trade(
        self,
        agent_id: str,
        trade_amount: float,
        current_balance: float,
        now: Optional[datetime] = None,
    ) -> RiskCheckResult:
        """
        Check whether an agent may open a trade.

        Checks run in a fixed order and stop at the first critical finding:
        emergency stop, tripped agent, trade size, minimum balance, size vs
        balance, 24h realized loss (trips), drawdown (trips), open positions.

        Args:
            agent_id: Agent identifier
            trade_amount: Collateral in USD
            current_balance: Agent's balance in USD
            now: Evaluation time (default: now)

        Returns:
            RiskCheckResult; allowed only when no check fired
        """
        now = now or utc_now()
        config = self.config

        if self._emergency.is_set():
            return self._reject(agent_id, ["Global emergency stop is active"], Severity.CRITICAL)

        with self.registry.agent_lock(agent_id):
            self.registry.get_or_create(agent_id, current_balance)

            if self.registry.is_tripped(agent_id):
                return self._reject(agent_id, ["Circuit breaker tripped for this agent"], Severity.CRITICAL)

            reasons: List[str] = []
            severity = Severity.LOW

            if trade_amount > config.max_trade_usd:
                reasons.append(
                    f"Trade amount (${trade_amount:.2f}) exceeds maximum (${config.max_trade_usd:.2f})"
                )
                severity = Severity.HIGH

            if current_balance < config.min_balance_usd:
                reasons.append(
                    f"Balance (${current_balance:.2f}) below minimum (${config.min_balance_usd:.2f})"
                )
                return self._reject(agent_id, reasons, Severity.CRITICAL)

            trade_percent = trade_amount / current_balance * 100 if current_balance > 0 else float("inf")
            if trade_percent > config.max_trade_balance_percent:
                reasons.append(
                    f"Trade size ({trade_percent:.1f}%) exceeds {config.max_trade_balance_percent:.0f}% of balance"
                )
                severity = _max_severity(severity, Severity.MEDIUM)

            daily_loss = self.daily_loss(agent_id, now)
            daily_loss_percent = daily_loss / current_balance * 100 if current_balance > 0 else 0.0
            if daily_loss_percent > config.max_daily_loss_percent:
                reasons.append(
                    f"Daily loss ({daily_loss_percent:.1f}%) exceeds limit ({config.max_daily_loss_percent:.0f}%)"
                )
                return self._trip_and_reject(agent_id, reasons, now)

            drawdown = self._recorded_drawdown(agent_id)
            if drawdown > config.max_drawdown_percent:
                reasons.append(
                    f"Drawdown ({drawdown:.1f}%) exceeds limit ({config.max_drawdown_percent:.0f}%)"
                )
                return self._trip_and_reject(agent_id, reasons, now)

            open_positions = self._open_positions_count(agent_id)
            if open_positions >= config.max_open_positions:
                reasons.append(f"Open positions ({open_positions}) at maximum ({config.max_open_positions})")
                severity = _max_severity(severity, Severity.MEDIUM)

        if reasons:
            return self._reject(agent_id, reasons, severity)
        return RiskCheckResult(allowed=True, reasons=[], severity=Severity.LOW)

    def daily_loss(self, agent_id: str, now: Optional[datetime] = None) -> float:
        """Sum of absolute realized losses in the last 24h, ignoring trades closed before the last reset."""
        if self.persistence is None:
            return 0.0
        now = now or utc_now()
        since = now - self.DAILY_WINDOW
        state = self.registry.snapshot(agent_id)
        if state and state.daily_loss_since and state.daily_loss_since > since:
            since = state.daily_loss_since
        trades = self.persistence.load_recent_closed_trades(agent_id, since=since)
        return sum(abs(t.pnl) for t in trades if t.pnl < 0 and t.closed_at >= since)

    def trip_agent(self, agent_id: str, reason: str = "Tripped by operator", now: Optional[datetime] = None) -> bool:
        """Trip an agent. Returns True if it was not already tripped."""
        newly = self.registry.trip(agent_id, reason, now)
        if newly:
            logger.error(f"[TRIPPED] Circuit breaker tripped for agent {agent_id}: {reason}")
        return newly

    def reset_agent(self, agent_id: str, now: Optional[datetime] = None) -> None:
        """Clear the tripped flag and daily-loss tracking for one agent."""
        self.registry.reset(agent_id, now)
        logger.info(f"[OK] Circuit breaker reset for agent {agent_id}")

    def is_tripped(self, agent_id: str) -> bool:
        return self.registry.is_tripped(agent_id)

    def emergency_stop_all(self) -> None:
        self._emergency.set()
        logger.critical("[EMERGENCY] Global emergency stop activated")

    def resume(self) -> None:
        self._emergency.clear()
        logger.warning("Global emergency stop cleared, trading resumed")

    def is_emergency_stopped(self) -> bool:
        return self._emergency.is_set()

    def update_config(self, **changes: Any) -> CircuitBreakerConfig:
        """
        Update thresholds without a restart.

        Args:
            **changes: Any CircuitBreakerConfig field

        Returns:
            The new configuration

        Raises:
            ValueError: On unknown fields or out-of-range values
        """
        known = {f.name for f in fields(CircuitBreakerConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown circuit breaker settings: {', '.join(sorted(unknown))}")

        with self._config_lock:
            updated = replace(self._config, **changes)
            updated.validate()
            self._config = updated
            self._apply_halt_thresholds(updated)

        if "emergency_stop" in changes:
            if changes["emergency_stop"]:
                self.emergency_stop_all()
            else:
                self.resume()
        logger.info(f"Circuit breaker config updated: {changes}")
        return self.config

    def get_status(self) -> Dict[str, Any]:
        """Current configuration and the list of tripped agents."""
        tripped = [agent_id for agent_id in self.registry.agent_ids() if self.registry.is_tripped(agent_id)]
        return {
            "config": vars(self.config),
            "emergency_stop": self.is_emergency_stopped(),
            "tripped_agents": tripped,
        }

    def get_agent_risk_status(self, agent_id: str) -> Optional[AgentRiskState]:
        return self.registry.snapshot(agent_id)

    def _trip_and_reject(self, agent_id: str, reasons: List[str], now: datetime) -> RiskCheckResult:
        self.trip_agent(agent_id, reasons[-1], now)
        result = self._reject(agent_id, reasons, Severity.CRITICAL)
        result.tripped = True
        return result

    @staticmethod
    def _reject(agent_id: str, reasons: List[str], severity: Severity) -> RiskCheckResult:
        logger.warning(f"[RISK] Trade rejected for agent {agent_id} ({severity.value}): {'; '.join(reasons)}")
        return RiskCheckResult(allowed=False, reasons=list(reasons), severity=severity)

    def _recorded_drawdown(self, agent_id: str) -> float:
        recorded = 0.0
        if self.persistence is not None:
            agent = self.persistence.load_agent(agent_id)
            if agent is not None:
                recorded = agent.max_drawdown_pct
        return recorded

    def _open_positions_count(self, agent_id: str) -> int:
        if self.persistence is None:
            return 0
        return len(self.persistence.load_open_positions(agent_id))


def _max_severity(current: Severity, candidate: Severity) -> Severity:
    return candidate if candidate.rank > current.rank else current
