"""Interfaces of the external collaborators the trading core depends on."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from riskloop.models import (
    Agent,
    ClosedTrade,
    OpenPosition,
    OrderResult,
    PriceSeries,
    Side,
    TradingSignal,
)


class PriceFeed(ABC):
    """Market data source."""

    @abstractmethod
    def get_history(self, symbol: str, lookback: int) -> PriceSeries:
        """
        Fetch recent price/volume history.

        Args:
            symbol: Trading pair symbol (e.g., "BTC/USDT")
            lookback: Number of points to fetch

        Returns:
            PriceSeries, oldest first

        Raises:
            ProviderUnavailable: If the feed cannot be reached
            PriceNotFound: If the symbol is unknown
        """

    @abstractmethod
    def get_current_price(self, symbol: str) -> float:
        """
        Fetch the latest price.

        Raises:
            ProviderUnavailable: If the feed cannot be reached
            PriceNotFound: If the symbol is unknown
        """


class TextCompletionProvider(ABC):
    """Free-form text generation backend (LLM)."""

    @abstractmethod
    def complete(self, prompt: str, temperature: float, max_tokens: int) -> str:
        """
        Generate a completion. No output format is guaranteed.

        Raises:
            ProviderUnavailable: If the provider cannot be reached
        """


class ExecutionClient(ABC):
    """Order execution venue."""

    @abstractmethod
    def place_market_order(self, symbol: str, side: Side, quantity: float) -> OrderResult:
        """
        Place a market order.

        Args:
            symbol: Trading pair symbol
            side: LONG buys, SHORT sells
            quantity: Base-asset quantity

        Returns:
            OrderResult with order id, executed quantity and price

        Raises:
            InvalidExecutionResult: If the fill has zero/invalid quantity or price
            ProviderUnavailable: If the venue cannot be reached
        """


class Persistence(ABC):
    """Transactional record store for agents, trades and signals."""

    @abstractmethod
    def load_agent(self, agent_id: str) -> Optional[Agent]:
        """Load one agent, or None if unknown."""

    @abstractmethod
    def list_agents(self) -> List[Agent]:
        """Load all agents."""

    @abstractmethod
    def save_agent(self, agent: Agent) -> None:
        """Insert or update an agent."""

    @abstractmethod
    def load_open_positions(self, agent_id: Optional[str] = None) -> List[OpenPosition]:
        """Load open positions, optionally for one agent only."""

    @abstractmethod
    def record_trade(self, position: OpenPosition, signal: Optional[TradingSignal] = None) -> str:
        """Persist a newly opened position together with the signal that opened it. Returns the trade id."""

    @abstractmethod
    def update_trade_on_close(
        self, trade_id: str, exit_price: float, pnl: float, reason: str, closed_at: datetime
    ) -> ClosedTrade:
        """Mark a trade closed and return the realized record."""

    @abstractmethod
    def load_recent_closed_trades(
        self, agent_id: str, limit: Optional[int] = None, since: Optional[datetime] = None
    ) -> List[ClosedTrade]:
        """Load closed trades for an agent, most recent first."""

    @abstractmethod
    def load_trade_signal(self, trade_id: str) -> Optional[TradingSignal]:
        """Load the signal stored with a trade."""


class AlertSink(ABC):
    """Notification channel. Fire-and-forget."""

    @abstractmethod
    def notify(self, message: str) -> None:
        """Deliver a message."""
