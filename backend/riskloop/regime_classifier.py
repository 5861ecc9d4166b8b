"""Market regime classification from technical indicators."""

import logging

from riskloop.models import (
    MarketRegime,
    PriceSeries,
    RegimeType,
    Side,
    TechnicalIndicators,
)

logger = logging.getLogger(__name__)


class RegimeClassifier:
    """
    Labels the current market as trending up/down, ranging or volatile.

    Classification order (first match wins):
    1. VOLATILE: volatility > 3% and Bollinger width > 0.05
    2. TRENDING_UP: price > EMA9 > EMA21 > EMA50 > EMA200
    3. TRENDING_DOWN: price < EMA9 < EMA21 < EMA50 < EMA200
    4. RANGING otherwise
    """

    VOLATILITY_THRESHOLD = 3.0
    BAND_WIDTH_THRESHOLD = 0.05
    TREND_STRENGTH_FLOOR = 0.6

    TREND_CONFIDENCE = 0.9
    VOLATILE_CONFIDENCE = 0.8
    RANGING_CONFIDENCE = 0.7
    RANGING_STRENGTH = 0.5

    def classify(self, series: PriceSeries, indicators: TechnicalIndicators) -> MarketRegime:
        """
        Classify market regime.

        Args:
            series: Price series the indicators were computed from
            indicators: Indicators for the series

        Returns:
            Exactly one MarketRegime
        """
        price = series.last_price
        ema = indicators.ema

        if (
            indicators.volatility_pct > self.VOLATILITY_THRESHOLD
            and indicators.bollinger.width > self.BAND_WIDTH_THRESHOLD
        ):
            regime = MarketRegime(
                regime_type=RegimeType.VOLATILE,
                strength=min(indicators.volatility_pct / 5, 1.0),
                confidence=self.VOLATILE_CONFIDENCE,
            )
        elif price > ema.ema9 > ema.ema21 > ema.ema50 > ema.ema200:
            regime = MarketRegime(
                regime_type=RegimeType.TRENDING_UP,
                strength=self._trend_strength(indicators.momentum),
                confidence=self.TREND_CONFIDENCE,
            )
        elif price < ema.ema9 < ema.ema21 < ema.ema50 < ema.ema200:
            regime = MarketRegime(
                regime_type=RegimeType.TRENDING_DOWN,
                strength=self._trend_strength(indicators.momentum),
                confidence=self.TREND_CONFIDENCE,
            )
        else:
            regime = MarketRegime(
                regime_type=RegimeType.RANGING,
                strength=self.RANGING_STRENGTH,
                confidence=self.RANGING_CONFIDENCE,
            )

        logger.debug(
            f"{series.symbol} regime: {regime.regime_type.value} "
            f"(strength {regime.strength:.2f}, confidence {regime.confidence:.2f})"
        )
        return regime

    def _trend_strength(self, momentum: float) -> float:
        return max(min(abs(momentum) / 10, 1.0), self.TREND_STRENGTH_FLOOR)


def is_reversal_against(side: Side, regime: MarketRegime, min_strength: float) -> bool:
    """True when the regime trends against `side` with strength above `min_strength`."""
    if regime.strength <= min_strength:
        return False
    if side is Side.LONG:
        return regime.regime_type is RegimeType.TRENDING_DOWN
    return regime.regime_type is RegimeType.TRENDING_UP
