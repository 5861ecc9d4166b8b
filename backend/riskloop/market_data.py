"""Market data acquisition: price history, indicators and regime per symbol."""

import logging
from typing import Optional

from riskloop.errors import ProviderUnavailable
from riskloop.indicators.indicator_engine import IndicatorEngine
from riskloop.interfaces import PriceFeed
from riskloop.models import MarketContext
from riskloop.regime_classifier import RegimeClassifier

logger = logging.getLogger(__name__)


class MarketDataService:
    """Fetches history from the price feed and turns it into a MarketContext."""

    def __init__(
        self,
        price_feed: PriceFeed,
        lookback: int = 250,
        indicator_engine: Optional[IndicatorEngine] = None,
        regime_classifier: Optional[RegimeClassifier] = None,
    ):
        """
        Initialize market data service.

        Args:
            price_feed: Source of history and current prices
            lookback: Number of points requested per symbol
            indicator_engine: Indicator calculator
            regime_classifier: Regime classifier
        """
        self.price_feed = price_feed
        self.lookback = lookback
        self.indicator_engine = indicator_engine or IndicatorEngine()
        self.regime_classifier = regime_classifier or RegimeClassifier()

    def build_context(self, symbol: str) -> MarketContext:
        """
        Fetch history and compute indicators and regime for one symbol.

        Raises:
            ProviderUnavailable: If the feed fails twice in a row
            PriceNotFound: If the feed does not know the symbol
            InsufficientHistory: If fewer points than the indicator engine needs
        """
        series = self._with_retry(lambda: self.price_feed.get_history(symbol, self.lookback), symbol)
        indicators = self.indicator_engine.compute(series)
        regime = self.regime_classifier.classify(series, indicators)
        return MarketContext(symbol=symbol, series=series, indicators=indicators, regime=regime)

    def current_price(self, symbol: str) -> float:
        """Latest price, retried once on ProviderUnavailable."""
        return self._with_retry(lambda: self.price_feed.get_current_price(symbol), symbol)

    @staticmethod
    def _with_retry(fetch, symbol: str):
        try:
            return fetch()
        except ProviderUnavailable as e:
            logger.warning(f"Price feed unavailable for {symbol}, retrying once: {e}")
            return fetch()
