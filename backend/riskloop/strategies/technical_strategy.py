"""Regime-conditioned rule-based strategy."""

import logging
from typing import Optional, Sequence

from riskloop.models import (
    Action,
    MarketContext,
    OpenPosition,
    RegimeType,
    TradingSignal,
)
from riskloop.strategies.base import SignalProvider

logger = logging.getLogger(__name__)


class TechnicalSignalProvider(SignalProvider):
    """
    Rule-based strategy conditioned on market regime.

    Rules:
    1. Ranging: mean reversion at the Bollinger bands with extreme RSI
    2. Trending: follow the trend when MACD histogram, EMA21 and volume confirm
    3. Momentum breakout (|momentum| > 3%, volume ratio > 1.5, histogram > 0) overrides both as LONG
    4. Volatile regime requires confidence >= 0.8, everything else >= 0.7
    5. Risk/reward below 1.8 downgrades to HOLD

    Stops are ATR multiples: 1.5x stop, 2x/3x/4x take-profit ladder by default.
    """

    name = "technical"

    MIN_CONFIDENCE = 0.7
    VOLATILE_MIN_CONFIDENCE = 0.8
    MIN_RISK_REWARD = 1.8
    STOP_ATR_MULTIPLE = 1.5
    TAKE_PROFIT_ATR_MULTIPLES = (2.0, 3.0, 4.0)
    ASSUMED_WIN_RATE = 0.55
    MAX_BALANCE_PCT = 0.15
    MIN_POSITION_USD = 3.0

    def __init__(
        self,
        stop_atr_multiple: float = STOP_ATR_MULTIPLE,
        take_profit_atr_multiples: Sequence[float] = TAKE_PROFIT_ATR_MULTIPLES,
    ):
        """
        Args:
            stop_atr_multiple: Stop distance in ATRs
            take_profit_atr_multiples: Take-profit ladder in ATRs, nearest first
        """
        if stop_atr_multiple <= 0 or not take_profit_atr_multiples:
            raise ValueError("Stop multiple must be positive and the take-profit ladder non-empty")
        self.stop_atr_multiple = stop_atr_multiple
        self.take_profit_atr_multiples = tuple(take_profit_atr_multiples)

    def analyze(
        self,
        context: MarketContext,
        balance: float,
        current_position: Optional[OpenPosition] = None,
    ) -> TradingSignal:
        """
        Generate a signal from regime-conditioned rules.

        Args:
            context: Series, indicators and regime for the symbol
            balance: Available balance in USD
            current_position: Ignored; exits are handled by the position monitor

        Returns:
            TradingSignal
        """
        price = context.price
        ind = context.indicators
        regime = context.regime

        action = Action.HOLD
        confidence = 0.0
        reasoning = ""

        if regime.regime_type is RegimeType.RANGING:
            if ind.rsi < 30 and price < ind.bollinger.lower:
                action = Action.LONG
                confidence = 0.75 + (30 - ind.rsi) / 100
                reasoning = f"Mean reversion: oversold in ranging market (RSI {ind.rsi:.1f})"
            elif ind.rsi > 70 and price > ind.bollinger.upper:
                action = Action.SHORT
                confidence = 0.75 + (ind.rsi - 70) / 100
                reasoning = f"Mean reversion: overbought in ranging market (RSI {ind.rsi:.1f})"

        if regime.regime_type is RegimeType.TRENDING_UP:
            if (
                40 < ind.rsi < 70
                and ind.macd.histogram > 0
                and price > ind.ema.ema21
                and ind.volume_ratio > 1.2
            ):
                action = Action.LONG
                confidence = 0.8 + regime.strength * 0.15
                reasoning = "Trend following: strong uptrend with confirmation"

        if regime.regime_type is RegimeType.TRENDING_DOWN:
            if (
                30 < ind.rsi < 60
                and ind.macd.histogram < 0
                and price < ind.ema.ema21
                and ind.volume_ratio > 1.2
            ):
                action = Action.SHORT
                confidence = 0.8 + regime.strength * 0.15
                reasoning = "Trend following: strong downtrend with confirmation"

        if abs(ind.momentum) > 3 and ind.volume_ratio > 1.5 and ind.macd.histogram > 0:
            action = Action.LONG
            confidence = 0.85
            reasoning = f"Momentum breakout: {ind.momentum:.2f}% on {ind.volume_ratio:.2f}x volume"

        confidence = min(confidence, 1.0)

        if regime.regime_type is RegimeType.VOLATILE and confidence < self.VOLATILE_MIN_CONFIDENCE:
            return self._hold(context, "Waiting for volatility to decrease")

        if confidence < self.MIN_CONFIDENCE:
            return self._hold(context, "No high-probability setup detected")

        atr = price * ind.volatility_pct / 100
        direction = 1 if action is Action.LONG else -1
        stop_loss = price - direction * self.stop_atr_multiple * atr
        take_profits = tuple(price + direction * m * atr for m in self.take_profit_atr_multiples)

        risk = abs(price - stop_loss)
        # Reward is the mean distance to the ladder targets, assuming equal scale-out.
        # The default ladder always scores 2.0; the 1.8 floor binds on tighter ladders.
        reward = sum(abs(tp - price) for tp in take_profits) / len(take_profits)
        risk_reward = reward / risk if risk > 0 else 0.0

        if risk_reward < self.MIN_RISK_REWARD:
            return self._hold(context, f"Risk-reward ratio insufficient ({risk_reward:.2f} < {self.MIN_RISK_REWARD})")

        kelly = (self.ASSUMED_WIN_RATE * reward - (1 - self.ASSUMED_WIN_RATE) * risk) / reward
        position_size = max(
            self.MIN_POSITION_USD,
            min(balance * self.MAX_BALANCE_PCT, balance * kelly * 0.5),
        )

        base_leverage = 5 if confidence > 0.85 else 3 if confidence > 0.75 else 2
        volatility_adjustment = 0.5 if ind.volatility_pct > 3 else 1.0
        leverage = max(2.0, min(10.0, base_leverage * volatility_adjustment))

        logger.info(
            f"[SIGNAL] technical {context.symbol}: {action.value} conf {confidence:.2f}, "
            f"RR {risk_reward:.2f}, size ${position_size:.2f} @ {leverage:.1f}x"
        )
        return TradingSignal(
            action=action,
            confidence=confidence,
            entry_price=price,
            stop_loss=stop_loss,
            take_profit_levels=take_profits,
            position_size_usd=position_size,
            leverage=leverage,
            risk_reward_ratio=risk_reward,
            reasoning=reasoning,
            symbol=context.symbol,
            source=self.name,
            regime=regime,
            indicators=ind,
        )

    def _hold(self, context: MarketContext, reasoning: str) -> TradingSignal:
        return TradingSignal.hold(
            symbol=context.symbol,
            price=context.price,
            reasoning=reasoning,
            source=self.name,
            regime=context.regime,
            indicators=context.indicators,
        )
