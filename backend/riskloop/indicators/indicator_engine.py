"""Technical indicator calculations from a price/volume series."""

import logging

import pandas as pd

from riskloop.errors import InsufficientHistory
from riskloop.models import (
    BollingerBands,
    EMAValues,
    MACDValues,
    PriceSeries,
    TechnicalIndicators,
)

logger = logging.getLogger(__name__)

MIN_HISTORY = 200


class IndicatorEngine:
    """
    Computes the indicator set used by regime classification and signal providers.

    Output is a pure function of the input series: no state is kept between
    calls, so one engine may be shared by concurrent agent pipelines.
    """

    RSI_PERIOD = 14
    BOLLINGER_PERIOD = 20
    BOLLINGER_STD = 2.0
    VOLUME_PERIOD = 20
    MOMENTUM_PERIOD = 10
    VOLATILITY_PERIOD = 14
    # Signal line is 80% of MACD rather than a 9-period EMA of MACD history
    MACD_SIGNAL_RATIO = 0.8

    def __init__(self, min_history: int = MIN_HISTORY):
        self.min_history = min_history

    def compute(self, series: PriceSeries) -> TechnicalIndicators:
        """
        Compute technical indicators from a price series.

        Args:
            series: Price/volume history, oldest first

        Returns:
            TechnicalIndicators

        Raises:
            InsufficientHistory: If the series has fewer than min_history points
        """
        if len(series) < self.min_history:
            raise InsufficientHistory(series.symbol, self.min_history, len(series))

        close = pd.Series(series.prices, dtype="float64")
        volume = pd.Series(series.volumes, dtype="float64")
        last_price = float(close.iloc[-1])

        rsi = self._rsi(close)

        ema_9 = self._ema(close, 9)
        ema_21 = self._ema(close, 21)
        ema_50 = self._ema(close, 50)
        ema_200 = self._ema(close, 200)

        macd_value = self._ema(close, 12) - self._ema(close, 26)
        macd_signal = macd_value * self.MACD_SIGNAL_RATIO

        window = close.iloc[-self.BOLLINGER_PERIOD:]
        middle = float(window.mean())
        std = float(window.std(ddof=0))
        upper = middle + self.BOLLINGER_STD * std
        lower = middle - self.BOLLINGER_STD * std
        width = (upper - lower) / middle if middle != 0 else 0.0

        avg_volume = float(volume.iloc[-self.VOLUME_PERIOD:].mean())
        volume_ratio = float(volume.iloc[-1]) / avg_volume if avg_volume > 0 else 1.0

        reference = float(close.iloc[-self.MOMENTUM_PERIOD])
        momentum = (last_price - reference) / reference * 100 if reference != 0 else 0.0

        deltas = close.diff().iloc[-self.VOLATILITY_PERIOD:].abs()
        volatility_pct = float(deltas.mean()) / last_price * 100 if last_price != 0 else 0.0

        indicators = TechnicalIndicators(
            rsi=rsi,
            macd=MACDValues(
                value=macd_value,
                signal=macd_signal,
                histogram=macd_value - macd_signal,
            ),
            bollinger=BollingerBands(upper=upper, middle=middle, lower=lower, width=width),
            ema=EMAValues(ema9=ema_9, ema21=ema_21, ema50=ema_50, ema200=ema_200),
            volume_ratio=volume_ratio,
            momentum=momentum,
            volatility_pct=volatility_pct,
        )
        logger.debug(
            f"{series.symbol} indicators: RSI {rsi:.1f}, MACD {macd_value:.4f}, "
            f"vol {volatility_pct:.2f}%, momentum {momentum:.2f}%"
        )
        return indicators

    def _rsi(self, close: pd.Series) -> float:
        """Simple-average RSI over the last RSI_PERIOD deltas."""
        deltas = close.diff().iloc[-self.RSI_PERIOD:]
        avg_gain = float(deltas.clip(lower=0).sum()) / self.RSI_PERIOD
        avg_loss = float((-deltas.clip(upper=0)).sum()) / self.RSI_PERIOD
        if avg_loss == 0:
            return 100.0
        rs = avg_gain / avg_loss
        return 100 - (100 / (1 + rs))

    @staticmethod
    def _ema(close: pd.Series, span: int) -> float:
        return float(close.ewm(span=span, adjust=False).mean().iloc[-1])
