"""Oscillator set used by the expert strategy."""

from dataclasses import dataclass
from typing import Sequence

import pandas as pd


@dataclass(frozen=True)
class ExpertIndicators:
    rsi_fast: float
    rsi_slow: float
    sma_10: float
    sma_50: float
    sma_100: float
    ema_12: float
    ema_26: float
    macd: float
    macd_signal: float
    cci: float
    stoch: float
    atr: float
    obv: float
    momentum: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    bb_width: float


def _rsi(close: pd.Series, period: int) -> float:
    if len(close) < period + 1:
        return 50.0
    deltas = close.diff().iloc[-period:]
    avg_gain = float(deltas.clip(lower=0).sum()) / period
    avg_loss = float((-deltas.clip(upper=0)).sum()) / period
    if avg_loss == 0:
        return 100.0
    return 100 - (100 / (1 + avg_gain / avg_loss))


def _sma(values: pd.Series, period: int) -> float:
    if len(values) < period:
        return float(values.iloc[-1]) if len(values) else 0.0
    return float(values.iloc[-period:].mean())


def compute_expert_indicators(prices: Sequence[float], volumes: Sequence[float]) -> ExpertIndicators:
    """
    Compute the expert oscillator set from closes and volumes.

    Only closing prices are available, so high and low equal the close: the
    typical price is the close and the true range is the absolute close delta.

    Args:
        prices: Closing prices, oldest first
        volumes: Volumes of equal length

    Returns:
        ExpertIndicators
    """
    close = pd.Series(list(prices), dtype="float64")
    volume = pd.Series(list(volumes), dtype="float64")

    sma_50 = _sma(close, 50)
    ema_12 = float(close.ewm(span=12, adjust=False).mean().iloc[-1])
    ema_26 = float(close.ewm(span=26, adjust=False).mean().iloc[-1])
    macd = ema_12 - ema_26

    # CCI(20) on the typical price
    cci = 0.0
    if len(close) >= 20:
        window = close.iloc[-20:]
        mean = float(window.mean())
        mean_deviation = float((window - mean).abs().mean())
        if mean_deviation > 0:
            cci = (float(close.iloc[-1]) - mean) / (0.015 * mean_deviation)

    # Stochastic %K(14)
    stoch = 50.0
    if len(close) >= 14:
        window = close.iloc[-14:]
        highest, lowest = float(window.max()), float(window.min())
        if highest != lowest:
            stoch = (float(close.iloc[-1]) - lowest) / (highest - lowest) * 100

    # ATR(14) from close-to-close true range
    atr = 0.0
    if len(close) >= 15:
        atr = float(close.diff().abs().iloc[-14:].mean())

    direction = close.diff().fillna(0.0)
    obv = float(volume[direction > 0].sum() - volume[direction < 0].sum())

    momentum = float(close.iloc[-1] - close.iloc[-5]) if len(close) >= 5 else 0.0

    # Simplified bands: 2% of SMA50 as the deviation
    std_dev = sma_50 * 0.02
    return ExpertIndicators(
        rsi_fast=_rsi(close, 7),
        rsi_slow=_rsi(close, 14),
        sma_10=_sma(close, 10),
        sma_50=sma_50,
        sma_100=_sma(close, 100),
        ema_12=ema_12,
        ema_26=ema_26,
        macd=macd,
        macd_signal=macd * 0.9,
        cci=cci,
        stoch=stoch,
        atr=atr,
        obv=obv,
        momentum=momentum,
        bb_upper=sma_50 + 2 * std_dev,
        bb_middle=sma_50,
        bb_lower=sma_50 - 2 * std_dev,
        bb_width=(4 * std_dev) / sma_50 if sma_50 else 0.0,
    )
