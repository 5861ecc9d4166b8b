"""LLM-backed strategy with a deterministic fallback."""

import logging
from dataclasses import replace
from typing import Any, Dict, Optional

from riskloop.decision_parser import DecisionParser
from riskloop.errors import ProviderUnavailable, SignalExtractionError
from riskloop.interfaces import TextCompletionProvider
from riskloop.models import Action, MarketContext, OpenPosition, TradingSignal
from riskloop.signal_validator import signal_problems
from riskloop.strategies.base import SignalProvider
from riskloop.strategies.technical_strategy import TechnicalSignalProvider

logger = logging.getLogger(__name__)


class AISignalProvider(SignalProvider):
    """
    Asks a text completion provider for a decision and extracts a JSON object from it.

    Any failure (provider down after one retry, unparseable text, invalid
    fields) routes to the rule-based technical provider, so analyze() always
    returns a valid signal.
    """

    name = "ai"

    TEMPERATURE = 0.7
    MAX_TOKENS = 800
    DEFAULT_LEVERAGE = 2.0
    DEFAULT_STOP_PCT = 0.02

    def __init__(
        self,
        completion_provider: TextCompletionProvider,
        fallback: Optional[TechnicalSignalProvider] = None,
        parser: Optional[DecisionParser] = None,
    ):
        """
        Initialize AI signal provider.

        Args:
            completion_provider: LLM backend
            fallback: Deterministic provider used when the LLM path fails
            parser: Extraction pipeline
        """
        self.completion_provider = completion_provider
        self.fallback = fallback or TechnicalSignalProvider()
        self.parser = parser or DecisionParser()

    def analyze(
        self,
        context: MarketContext,
        balance: float,
        current_position: Optional[OpenPosition] = None,
    ) -> TradingSignal:
        prompt = self.build_prompt(context, balance, current_position)

        try:
            raw_response = self._complete_with_retry(prompt)
        except ProviderUnavailable as e:
            return self._fallback(context, balance, current_position, f"LLM unavailable: {e}")

        try:
            return self.signal_from_response(raw_response, context)
        except SignalExtractionError as e:
            return self._fallback(context, balance, current_position, str(e))

    def signal_from_response(self, raw_response: str, context: MarketContext) -> TradingSignal:
        """
        Turn a raw LLM response into a validated signal.

        Raises:
            SignalExtractionError: If no strategy yields a valid signal
        """
        result = self.parser.extract(raw_response)
        if not result.ok:
            raise SignalExtractionError(f"Unparseable AI response: {'; '.join(result.errors)}")

        signal = self._build_signal(result.payload, context)
        problems = signal_problems(signal)
        if problems:
            raise SignalExtractionError(f"AI signal violates invariants: {'; '.join(problems)}")

        logger.info(
            f"[SIGNAL] ai {context.symbol}: {signal.action.value} conf {signal.confidence:.2f} "
            f"(extracted via {result.strategy})"
        )
        return signal

    def build_prompt(self, context: MarketContext, balance: float, current_position: Optional[OpenPosition]) -> str:
        """
        Build the decision prompt.

        Args:
            context: Market context for the symbol
            balance: Available balance in USD
            current_position: Open position on this symbol, if any

        Returns:
            str: Formatted prompt string
        """
        ind = context.indicators
        regime = context.regime
        if current_position is not None:
            position_line = (
                f"{current_position.side.value} {current_position.quantity:.6f} @ "
                f"${current_position.entry_price:,.4f} (P&L {current_position.unrealized_pnl_pct(context.price):+.2f}%)"
            )
        else:
            position_line = "none"

        return f"""Decide the next action for {context.symbol}.

MARKET:
- Price: ${context.price:,.4f}
- 24h change: {context.series.price_change_pct(24):+.2f}%
- Regime: {regime.regime_type.value} (strength {regime.strength:.2f}, confidence {regime.confidence:.2f})

INDICATORS:
- RSI(14): {ind.rsi:.1f}
- MACD: {ind.macd.value:.4f} (signal {ind.macd.signal:.4f}, histogram {ind.macd.histogram:.4f})
- Bollinger: upper {ind.bollinger.upper:.4f}, middle {ind.bollinger.middle:.4f}, lower {ind.bollinger.lower:.4f}, width {ind.bollinger.width:.4f}
- EMA 9/21/50/200: {ind.ema.ema9:.4f} / {ind.ema.ema21:.4f} / {ind.ema.ema50:.4f} / {ind.ema.ema200:.4f}
- Volume ratio: {ind.volume_ratio:.2f}x
- Momentum(10): {ind.momentum:+.2f}%
- Volatility: {ind.volatility_pct:.2f}%

ACCOUNT:
- Available balance: ${balance:,.2f}
- Open position: {position_line}

RULES:
1. Only trade with confidence above 0.65
2. Risk/reward must exceed 1.5
3. Leverage between 1 and 12
4. Use CLOSE only to exit the open position

Respond with ONLY this JSON object:
{{
  "action": "LONG" | "SHORT" | "CLOSE" | "HOLD",
  "confidence": 0.0-1.0,
  "stop_loss": price,
  "take_profit": [price, ...],
  "leverage": number,
  "reasoning": "one sentence"
}}"""

    def _complete_with_retry(self, prompt: str) -> str:
        try:
            return self.completion_provider.complete(prompt, self.TEMPERATURE, self.MAX_TOKENS)
        except ProviderUnavailable as e:
            logger.warning(f"LLM unavailable, retrying once: {e}")
            return self.completion_provider.complete(prompt, self.TEMPERATURE, self.MAX_TOKENS)

    def _build_signal(self, payload: Dict[str, Any], context: MarketContext) -> TradingSignal:
        action = Action(payload["action"])
        price = context.price

        if action not in (Action.LONG, Action.SHORT):
            return replace(
                TradingSignal.hold(
                    symbol=context.symbol,
                    price=price,
                    reasoning=payload["reasoning"] or f"AI recommends {action.value}",
                    source=self.name,
                    confidence=payload["confidence"],
                    regime=context.regime,
                    indicators=context.indicators,
                ),
                action=action,
            )

        direction = 1 if action is Action.LONG else -1
        atr = price * context.indicators.volatility_pct / 100
        stop_distance = 1.5 * atr if atr > 0 else price * self.DEFAULT_STOP_PCT

        stop_loss = payload["stop_loss"]
        if stop_loss is None:
            stop_loss = price - direction * stop_distance
        take_profits = payload["take_profit_levels"] or [
            price + direction * multiple * stop_distance / 1.5 for multiple in (2.0, 3.0, 4.0)
        ]

        if (stop_loss - price) * direction >= 0:
            raise SignalExtractionError(f"AI stop loss {stop_loss} is on the wrong side of {price} for {action.value}")
        if any((tp - price) * direction <= 0 for tp in take_profits):
            raise SignalExtractionError(f"AI take-profit levels {take_profits} are on the wrong side of {price}")

        risk = abs(price - stop_loss)
        risk_reward = abs(take_profits[0] - price) / risk if risk > 0 else 0.0

        return TradingSignal(
            action=action,
            confidence=payload["confidence"],
            entry_price=price,
            stop_loss=stop_loss,
            take_profit_levels=tuple(take_profits),
            position_size_usd=payload["position_size_usd"] or 0.0,
            leverage=payload["leverage"] if payload["leverage"] is not None else self.DEFAULT_LEVERAGE,
            risk_reward_ratio=risk_reward,
            reasoning=payload["reasoning"],
            symbol=context.symbol,
            source=self.name,
            regime=context.regime,
            indicators=context.indicators,
        )

    def _fallback(
        self,
        context: MarketContext,
        balance: float,
        current_position: Optional[OpenPosition],
        reason: str,
    ) -> TradingSignal:
        logger.warning(f"[FALLBACK] AI path failed for {context.symbol}, using technical analysis: {reason}")
        signal = self.fallback.analyze(context, balance, current_position)
        return replace(signal, source="ai_fallback", reasoning=f"{signal.reasoning} (AI fallback: {reason})")
