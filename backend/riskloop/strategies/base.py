"""Signal provider interface."""

from abc import ABC, abstractmethod
from typing import Optional

from riskloop.models import Action, MarketContext, OpenPosition, TradingSignal


class SignalProvider(ABC):
    """Abstract base class for strategies that turn market context into a TradingSignal."""

    name: str = "provider"
    # True when position_size_usd is a sizing suggestion the sizer should honour
    embeds_size: bool = False

    @abstractmethod
    def analyze(
        self,
        context: MarketContext,
        balance: float,
        current_position: Optional[OpenPosition] = None,
    ) -> TradingSignal:
        """
        Generate a trading signal for one symbol.

        Args:
            context: Series, indicators and regime for the symbol
            balance: Agent's available balance in USD
            current_position: Agent's open position on this symbol, if any

        Returns:
            TradingSignal (Hold when there is nothing to do)
        """

    def should_trade(self, signal: TradingSignal, floor: float) -> bool:
        """Gate applied by the arbitrator on top of the tier's confidence floor."""
        return signal.action is not Action.HOLD and signal.confidence >= floor
