"""Conservative score-based strategy with position exit management."""

import logging
from typing import Dict, Optional

from riskloop.indicators.expert_indicators import ExpertIndicators, compute_expert_indicators
from riskloop.models import (
    Action,
    MarketContext,
    OpenPosition,
    Side,
    TradingSignal,
)
from riskloop.regime_classifier import is_reversal_against
from riskloop.strategies.base import SignalProvider

logger = logging.getLogger(__name__)


class ExpertSignalProvider(SignalProvider):
    """
    Conservative strategy scoring normalized oscillators into a target in [-1, 1].

    Confidence is computed on a 0-100 scale and divided by 100 on output.
    Entries need a target beyond +/-0.6, extreme fast/slow RSI and 75/100
    confidence. Open positions get CLOSE recommendations on regime reversal,
    RSI divergence with a loss beyond 5%, a 2% trailing stop once the gain
    exceeds 5%, or a score flip.
    """

    name = "expert"
    embeds_size = True

    ENTRY_SCORE = 0.6
    EXIT_SCORE = 0.2
    MIN_ENTRY_CONFIDENCE = 75.0
    HOLD_CONFIDENCE = 50.0

    STOP_LOSS_PCT = 0.03
    TAKE_PROFIT_PCT = 0.08
    BASE_SIZE_USD = 100.0
    RISK_PCT = 0.02

    REVERSAL_STRENGTH = 0.7
    DIVERGENCE_LOSS_PCT = -5.0
    TRAILING_TRIGGER_PCT = 5.0
    TRAILING_STOP_PCT = 0.02

    BASE_WEIGHTS = {"rsi": 0.15, "macd": 0.15, "cci": 0.1, "momentum": 0.2, "stoch": 0.1}

    def analyze(
        self,
        context: MarketContext,
        balance: float,
        current_position: Optional[OpenPosition] = None,
    ) -> TradingSignal:
        """
        Generate a conservative entry or an exit recommendation.

        Args:
            context: Series, indicators and regime for the symbol
            balance: Available balance in USD (sizing uses a fixed base instead)
            current_position: Open position on this symbol, if any

        Returns:
            TradingSignal with confidence on a 0-1 scale
        """
        price = context.price
        ei = compute_expert_indicators(context.series.prices, context.series.volumes)
        trend = self._detect_trend(price, context.series.price_change_pct(24), ei)
        volatility = self._volatility_score(ei.atr, price)
        target = self._target_score(ei, trend, volatility)

        if current_position is not None:
            return self._manage_position(context, current_position, target)

        action = Action.HOLD
        confidence = self.HOLD_CONFIDENCE
        reasoning = (
            f"No high-probability setup. Score {target:.2f}, "
            f"RSI {ei.rsi_fast:.1f}/{ei.rsi_slow:.1f}"
        )

        if target > self.ENTRY_SCORE and ei.rsi_fast < 35 and ei.rsi_slow < 45:
            long_confidence = min(100.0, (target + 1) * 50)
            if long_confidence >= self.MIN_ENTRY_CONFIDENCE:
                action, confidence = Action.LONG, long_confidence
                reasoning = f"High-probability long: score {target:.2f}, RSI oversold ({ei.rsi_fast:.1f}/{ei.rsi_slow:.1f})"
        elif target < -self.ENTRY_SCORE and ei.rsi_fast > 65 and ei.rsi_slow > 55:
            short_confidence = min(100.0, (1 - target) * 50)
            if short_confidence >= self.MIN_ENTRY_CONFIDENCE:
                action, confidence = Action.SHORT, short_confidence
                reasoning = f"High-probability short: score {target:.2f}, RSI overbought ({ei.rsi_fast:.1f}/{ei.rsi_slow:.1f})"

        if action is Action.HOLD:
            return TradingSignal.hold(
                symbol=context.symbol,
                price=price,
                reasoning=reasoning,
                source=self.name,
                confidence=confidence / 100,
                regime=context.regime,
                indicators=context.indicators,
            )

        leverage = self._leverage(volatility, trend)
        size = self.BASE_SIZE_USD * self.RISK_PCT * (0.8 if volatility > 0.7 else 1.0) * leverage
        direction = 1 if action is Action.LONG else -1
        stop_loss = price * (1 - direction * self.STOP_LOSS_PCT)
        take_profit = price * (1 + direction * self.TAKE_PROFIT_PCT)

        logger.info(
            f"[SIGNAL] expert {context.symbol}: {action.value} conf {confidence:.0f}/100, "
            f"trend {trend}, leverage {leverage:.1f}x"
        )
        return TradingSignal(
            action=action,
            confidence=confidence / 100,
            entry_price=price,
            stop_loss=stop_loss,
            take_profit_levels=(take_profit,),
            position_size_usd=size,
            leverage=leverage,
            risk_reward_ratio=self.TAKE_PROFIT_PCT / self.STOP_LOSS_PCT,
            reasoning=reasoning,
            symbol=context.symbol,
            source=self.name,
            regime=context.regime,
            indicators=context.indicators,
        )

    def _manage_position(self, context: MarketContext, position: OpenPosition, target: float) -> TradingSignal:
        """Decide whether an open position should be closed."""
        price = context.price
        pnl_pct = position.unrealized_pnl_pct(price)
        side = position.side
        close_reason = None
        confidence = 0.0

        if is_reversal_against(side, context.regime, self.REVERSAL_STRENGTH):
            close_reason = f"Market regime changed to {context.regime.regime_type.value.lower()}"
            confidence = context.regime.confidence
        elif side is Side.LONG and context.indicators.rsi < 30 and pnl_pct < self.DIVERGENCE_LOSS_PCT:
            close_reason = f"Bearish divergence detected (RSI {context.indicators.rsi:.1f}, P&L {pnl_pct:.2f}%)"
            confidence = 0.75
        elif side is Side.SHORT and context.indicators.rsi > 70 and pnl_pct < self.DIVERGENCE_LOSS_PCT:
            close_reason = f"Bullish divergence detected (RSI {context.indicators.rsi:.1f}, P&L {pnl_pct:.2f}%)"
            confidence = 0.75
        elif pnl_pct > self.TRAILING_TRIGGER_PCT and self._trailing_stop_hit(context, position):
            close_reason = f"Trailing stop - locking in profits ({pnl_pct:.2f}%)"
            confidence = 0.8
        elif side is Side.LONG and target < -self.EXIT_SCORE:
            close_reason = f"Signal reversal detected (score {target:.2f})"
            confidence = min(100.0, abs(target) * 100) / 100
        elif side is Side.SHORT and target > self.EXIT_SCORE:
            close_reason = f"Signal reversal detected (score {target:.2f})"
            confidence = min(100.0, target * 100) / 100

        if close_reason is None:
            return TradingSignal.hold(
                symbol=context.symbol,
                price=price,
                reasoning=f"Position still valid (P&L {pnl_pct:.2f}%, score {target:.2f})",
                source=self.name,
                confidence=self.HOLD_CONFIDENCE / 100,
                regime=context.regime,
                indicators=context.indicators,
            )

        logger.info(f"[CLOSE] expert recommends closing {position.symbol} {side.value}: {close_reason}")
        return TradingSignal(
            action=Action.CLOSE,
            confidence=confidence,
            entry_price=price,
            stop_loss=price,
            take_profit_levels=(),
            position_size_usd=0.0,
            leverage=1.0,
            risk_reward_ratio=0.0,
            reasoning=close_reason,
            symbol=context.symbol,
            source=self.name,
            regime=context.regime,
            indicators=context.indicators,
        )

    def _trailing_stop_hit(self, context: MarketContext, position: OpenPosition) -> bool:
        """Check the 2% trail from the best price seen since the position opened."""
        opened_ms = int(position.opened_at.timestamp() * 1000)
        since_open = [p.price for p in context.series.points if p.timestamp >= opened_ms]
        if not since_open:
            since_open = [context.price]
        if position.side is Side.LONG:
            return context.price <= max(since_open) * (1 - self.TRAILING_STOP_PCT)
        return context.price >= min(since_open) * (1 + self.TRAILING_STOP_PCT)

    @staticmethod
    def _detect_trend(price: float, change_24h: float, ei: ExpertIndicators) -> str:
        if price > ei.bb_middle and change_24h > 0:
            return "BULL"
        if price < ei.bb_middle and change_24h < 0:
            return "BEAR"
        return "NEUTRAL"

    @staticmethod
    def _volatility_score(atr: float, price: float) -> float:
        """Inverse ATR ratio in [0.1, 1]; higher means calmer."""
        if price <= 0:
            return 0.1
        return max(0.1, min(1.0, 1 / (1 + atr / price * 100)))

    def _weights(self, trend: str, volatility: float) -> Dict[str, float]:
        weights = dict(self.BASE_WEIGHTS)
        if trend != "NEUTRAL" and volatility > 0.5:
            weights["momentum"] *= 1.5
        return weights

    def _target_score(self, ei: ExpertIndicators, trend: str, volatility: float) -> float:
        weights = self._weights(trend, volatility)
        score = (
            weights["rsi"] * (ei.rsi_fast - 50) / 25
            + weights["macd"] * ei.macd / 100
            + weights["cci"] * ei.cci / 100
            + weights["momentum"] * ei.momentum / 100
            + weights["stoch"] * (ei.stoch - 50) / 50
        )
        multiplier = 1 if trend == "BULL" else -1 if trend == "BEAR" else 0
        return max(-1.0, min(1.0, score + multiplier * volatility))

    @staticmethod
    def _leverage(volatility: float, trend: str) -> float:
        leverage = 2.0
        if trend != "NEUTRAL" and 0.6 < volatility < 0.85:
            leverage = 3.0
        elif trend != "NEUTRAL":
            leverage = 2.5
        if volatility < 0.3 or volatility > 0.85:
            leverage = max(1.5, leverage * 0.7)
        return min(3.0, max(1.5, leverage))
