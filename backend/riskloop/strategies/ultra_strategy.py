"""Aggressive multi-factor scoring strategy."""

import logging
import math
from typing import List, Optional, Tuple

from riskloop.models import (
    Action,
    MarketContext,
    OpenPosition,
    Side,
    TechnicalIndicators,
    TradingSignal,
    Urgency,
)
from riskloop.strategies.base import SignalProvider

logger = logging.getLogger(__name__)


def classify_trend(ind: TechnicalIndicators) -> str:
    """STRONG_UP | UP | SIDEWAYS | DOWN | STRONG_DOWN from EMA order and momentum."""
    ema = ind.ema
    if ema.ema9 > ema.ema21 > ema.ema50 and ind.momentum > 0:
        return "STRONG_UP"
    if ema.ema9 > ema.ema21 and ind.momentum > 0:
        return "UP"
    if ema.ema9 < ema.ema21 < ema.ema50 and ind.momentum < 0:
        return "STRONG_DOWN"
    if ema.ema9 < ema.ema21 and ind.momentum < 0:
        return "DOWN"
    return "SIDEWAYS"


class UltraSignalProvider(SignalProvider):
    """
    Aggressive strategy that sums weighted long and short conditions.

    Enters on the stronger side once its score reaches 0.35. Closes an open
    position when the opposite side scores above 0.6 or the loss exceeds $5.
    """

    name = "ultra"
    embeds_size = True

    ENTRY_THRESHOLD = 0.35
    CLOSE_THRESHOLD = 0.6
    MAX_LOSS_USD = 5.0
    STOP_LOSS_PCT = 0.025
    TAKE_PROFIT_PCTS = (0.02, 0.035, 0.055)
    MAX_BALANCE_PCT = 0.60

    def score(self, context: MarketContext) -> Tuple[float, List[str], float, List[str]]:
        """
        Score both directions.

        Returns:
            (long_score, long_reasons, short_score, short_reasons)
        """
        ind = context.indicators
        price = context.price
        trend = classify_trend(ind)

        long_conditions = [
            (ind.rsi < 35, 0.25, "Oversold RSI"),
            (trend == "STRONG_UP", 0.3, "Strong uptrend"),
            (trend == "UP", 0.2, "Uptrend"),
            (price < ind.bollinger.lower, 0.2, "Below lower band"),
            (ind.macd.histogram > 0, 0.15, "MACD bullish"),
            (ind.momentum > 0, 0.1, "Positive momentum"),
            (ind.ema.ema9 > ind.ema.ema21, 0.15, "EMA crossover bullish"),
        ]
        short_conditions = [
            (ind.rsi > 65, 0.25, "Overbought RSI"),
            (trend == "STRONG_DOWN", 0.3, "Strong downtrend"),
            (trend == "DOWN", 0.2, "Downtrend"),
            (price > ind.bollinger.upper, 0.2, "Above upper band"),
            (ind.macd.histogram < 0, 0.15, "MACD bearish"),
            (ind.momentum < 0, 0.1, "Negative momentum"),
            (ind.ema.ema9 < ind.ema.ema21, 0.15, "EMA crossover bearish"),
        ]

        long_score = sum(weight for hit, weight, _ in long_conditions if hit)
        short_score = sum(weight for hit, weight, _ in short_conditions if hit)
        long_reasons = [reason for hit, _, reason in long_conditions if hit]
        short_reasons = [reason for hit, _, reason in short_conditions if hit]
        return long_score, long_reasons, short_score, short_reasons

    def analyze(
        self,
        context: MarketContext,
        balance: float,
        current_position: Optional[OpenPosition] = None,
    ) -> TradingSignal:
        """
        Generate an aggressive entry, a capital-preserving close, or HOLD.

        Args:
            context: Series, indicators and regime for the symbol
            balance: Available balance in USD
            current_position: Open position on this symbol, if any

        Returns:
            TradingSignal
        """
        price = context.price
        long_score, long_reasons, short_score, short_reasons = self.score(context)
        strength = min(max(long_score, short_score), 1.0)

        if current_position is not None:
            opposite = short_score if current_position.side is Side.LONG else long_score
            if opposite > self.CLOSE_THRESHOLD or current_position.unrealized_pnl(price) < -self.MAX_LOSS_USD:
                logger.info(f"[CLOSE] ultra recommends closing {current_position.symbol} {current_position.side.value}")
                return TradingSignal(
                    action=Action.CLOSE,
                    confidence=strength,
                    entry_price=price,
                    stop_loss=price,
                    take_profit_levels=(price,),
                    position_size_usd=0.0,
                    leverage=1.0,
                    risk_reward_ratio=0.0,
                    reasoning="Closing position to preserve capital",
                    symbol=context.symbol,
                    source=self.name,
                    regime=context.regime,
                    indicators=context.indicators,
                    urgency=Urgency.CRITICAL,
                )

        if long_score > short_score and long_score >= self.ENTRY_THRESHOLD:
            action, score, reasons = Action.LONG, long_score, long_reasons
        elif short_score > long_score and short_score >= self.ENTRY_THRESHOLD:
            action, score, reasons = Action.SHORT, short_score, short_reasons
        else:
            return TradingSignal.hold(
                symbol=context.symbol,
                price=price,
                reasoning="Insufficient signal strength or conflicting indicators",
                source=self.name,
                regime=context.regime,
                indicators=context.indicators,
            )

        confidence = min(score, 1.0)
        if score > 0.75:
            urgency = Urgency.CRITICAL
        elif score > 0.60:
            urgency = Urgency.HIGH
        else:
            urgency = Urgency.MEDIUM

        risk_pct = min(0.20 + confidence * 0.15, 0.40)
        leverage = float(math.floor(3 + confidence * 4))
        position_size = min(balance * risk_pct * leverage, balance * self.MAX_BALANCE_PCT)

        direction = 1 if action is Action.LONG else -1
        stop_loss = price * (1 - direction * self.STOP_LOSS_PCT)
        take_profits = tuple(price * (1 + direction * tp) for tp in self.TAKE_PROFIT_PCTS)

        logger.info(
            f"[SIGNAL] ultra {context.symbol}: {action.value} score {score:.2f} ({urgency.value}), "
            f"size ${position_size:.2f} @ {leverage:.0f}x"
        )
        return TradingSignal(
            action=action,
            confidence=confidence,
            entry_price=price,
            stop_loss=stop_loss,
            take_profit_levels=take_profits,
            position_size_usd=position_size,
            leverage=leverage,
            risk_reward_ratio=self.TAKE_PROFIT_PCTS[0] / self.STOP_LOSS_PCT,
            reasoning=", ".join(reasons),
            symbol=context.symbol,
            source=self.name,
            regime=context.regime,
            indicators=context.indicators,
            urgency=urgency,
        )
