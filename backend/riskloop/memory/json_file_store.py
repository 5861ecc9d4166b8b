"""JSON-file backed store so agents, open trades and trade history survive restarts.

The whole state is rewritten after every change through a temporary file and
os.replace, so a crash mid-write leaves the previous snapshot intact.

Schema:
  {
    "version": 1,
    "agents": [{"agent_id": "...", "balance": 100.0, ...}],
    "open_positions": [{"trade_id": "...", "side": "LONG", "opened_at": "...", ...}],
    "closed_trades": [{"trade_id": "...", "pnl": -1.5, "closed_at": "...", ...}],
    "signals": {"<trade_id>": "<TradingSignal JSON>"}
  }
"""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

from riskloop.memory.in_memory_store import InMemoryPersistence
from riskloop.models import Agent, ClosedTrade, OpenPosition, TradingSignal

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class JsonFilePersistence(InMemoryPersistence):
    """InMemoryPersistence that loads its state at init and saves it after every write."""

    def __init__(self, path: str, max_closed_trades: int = 5000) -> None:
        """
        Args:
            path: State file; created on first write
            max_closed_trades: Oldest closed trades beyond this are dropped

        Raises:
            ValueError: If an existing state file cannot be parsed
        """
        super().__init__()
        self.path = path
        self.max_closed_trades = max_closed_trades
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            logger.info(f"No state file at {self.path}, starting empty")
            return

        # A corrupt file must not be replaced by an empty one: live positions would be orphaned
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw: Any = json.load(f)
            agents = [Agent.from_dict(a) for a in raw.get("agents", [])]
            positions = [OpenPosition.from_dict(p) for p in raw.get("open_positions", [])]
            closed = [ClosedTrade.from_dict(t) for t in raw.get("closed_trades", [])]
            signals = {str(k): str(v) for k, v in raw.get("signals", {}).items()}
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"State file {self.path} is unreadable: {e}") from e

        with self._lock:
            self._agents = {a.agent_id: a for a in agents}
            self._open = {p.trade_id: p for p in positions}
            self._closed = closed
            self._signals = signals
        logger.info(
            f"[OK] Restored state from {self.path}: {len(agents)} agent(s), "
            f"{len(positions)} open position(s), {len(closed)} closed trade(s)"
        )

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "agents": [a.to_dict() for a in self._agents.values()],
            "open_positions": [p.to_dict() for p in self._open.values()],
            "closed_trades": [t.to_dict() for t in self._closed],
            "signals": dict(self._signals),
        }

    def _save(self) -> None:
        """Write the state atomically. Caller holds the lock."""
        if len(self._closed) > self.max_closed_trades:
            self._closed.sort(key=lambda t: t.closed_at)
            self._closed = self._closed[-self.max_closed_trades:]
            live_ids = set(self._open) | {t.trade_id for t in self._closed}
            self._signals = {k: v for k, v in self._signals.items() if k in live_ids}

        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._snapshot(), f, separators=(",", ":"))
            os.replace(tmp_path, self.path)
        except OSError as e:
            # The in-memory state stays authoritative; the next write retries
            logger.error(f"[ERROR] Failed to save state to {self.path}: {e}", exc_info=True)

    def save_agent(self, agent: Agent) -> None:
        with self._lock:
            super().save_agent(agent)
            self._save()

    def record_trade(self, position: OpenPosition, signal: Optional[TradingSignal] = None) -> str:
        with self._lock:
            trade_id = super().record_trade(position, signal)
            self._save()
            return trade_id

    def update_trade_on_close(
        self, trade_id: str, exit_price: float, pnl: float, reason: str, closed_at: datetime
    ) -> ClosedTrade:
        with self._lock:
            trade = super().update_trade_on_close(trade_id, exit_price, pnl, reason, closed_at)
            self._save()
            return trade

    def add_closed_trade(self, trade: ClosedTrade) -> None:
        with self._lock:
            super().add_closed_trade(trade)
            self._save()
