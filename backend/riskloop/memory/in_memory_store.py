"""Thread-safe in-process record store for agents, trades and signal snapshots."""

import json
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from riskloop.interfaces import Persistence
from riskloop.models import Agent, ClosedTrade, OpenPosition, TradingSignal

logger = logging.getLogger(__name__)


class InMemoryPersistence(Persistence):
    """Thread-safe store used in tests and when no state file is configured.

    Signals are kept as JSON text, the same way a database column would hold
    them, so load_trade_signal returns what a real store would give back.
    Every method returns copies; callers never hold references into the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._agents: Dict[str, Agent] = {}
        self._open: Dict[str, OpenPosition] = {}
        self._closed: List[ClosedTrade] = []
        self._signals: Dict[str, str] = {}

    def load_agent(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            return _copy_agent(agent) if agent else None

    def list_agents(self) -> List[Agent]:
        with self._lock:
            return [_copy_agent(a) for a in self._agents.values()]

    def save_agent(self, agent: Agent) -> None:
        with self._lock:
            self._agents[agent.agent_id] = _copy_agent(agent)

    def load_open_positions(self, agent_id: Optional[str] = None) -> List[OpenPosition]:
        with self._lock:
            return [
                replace(p) for p in self._open.values()
                if agent_id is None or p.agent_id == agent_id
            ]

    def record_trade(self, position: OpenPosition, signal: Optional[TradingSignal] = None) -> str:
        with self._lock:
            trade_id = position.trade_id or f"trade-{uuid.uuid4().hex[:12]}"
            if trade_id in self._open:
                raise ValueError(f"Trade {trade_id} is already open")
            self._open[trade_id] = replace(position, trade_id=trade_id)
            if signal is not None:
                self._signals[trade_id] = json.dumps(signal.to_dict())
            return trade_id

    def update_trade_on_close(
        self, trade_id: str, exit_price: float, pnl: float, reason: str, closed_at: datetime
    ) -> ClosedTrade:
        with self._lock:
            position = self._open.pop(trade_id, None)
            if position is None:
                raise KeyError(f"No open trade with id {trade_id}")
            trade = ClosedTrade(
                trade_id=trade_id,
                agent_id=position.agent_id,
                symbol=position.symbol,
                side=position.side,
                entry_price=position.entry_price,
                exit_price=exit_price,
                quantity=position.quantity,
                pnl=pnl,
                opened_at=position.opened_at,
                closed_at=closed_at,
                reason=reason,
            )
            self._closed.append(trade)
            return trade

    def load_recent_closed_trades(
        self, agent_id: str, limit: Optional[int] = None, since: Optional[datetime] = None
    ) -> List[ClosedTrade]:
        with self._lock:
            trades = [
                t for t in self._closed
                if t.agent_id == agent_id and (since is None or t.closed_at >= since)
            ]
        trades.sort(key=lambda t: t.closed_at, reverse=True)
        return trades[:limit] if limit is not None else trades

    def load_trade_signal(self, trade_id: str) -> Optional[TradingSignal]:
        with self._lock:
            raw = self._signals.get(trade_id)
        if raw is None:
            return None
        return TradingSignal.from_dict(json.loads(raw))

    def add_closed_trade(self, trade: ClosedTrade) -> None:
        """Insert a historical closed trade (used when seeding state)."""
        with self._lock:
            self._closed.append(trade)


def _copy_agent(agent: Agent) -> Agent:
    return replace(agent, symbols=list(agent.symbols))


def load_agents_file(path: str, persistence: Persistence) -> List[Agent]:
    """
    Seed agents from a JSON file.

    The file holds either a list of agent objects or {"agents": [...]}.

    Args:
        path: JSON file path
        persistence: Store to save the agents into

    Returns:
        Loaded agents

    Raises:
        ValueError: If the file is not valid JSON or an entry lacks agent_id
    """
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw: Any = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Agents file {path} is not valid JSON: {e}") from e

    entries = raw.get("agents", []) if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ValueError(f"Agents file {path} must contain a list of agents")

    agents = []
    for entry in entries:
        if not isinstance(entry, dict) or "agent_id" not in entry:
            raise ValueError(f"Invalid agent entry in {path}: {entry!r}")
        agent = Agent.from_dict(entry)
        persistence.save_agent(agent)
        agents.append(agent)

    logger.info(f"Loaded {len(agents)} agent(s) from {path}")
    return agents
