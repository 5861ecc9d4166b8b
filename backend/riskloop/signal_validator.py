"""Invariant checks applied to every provider signal before arbitration."""

import logging
import math
from typing import List

from riskloop.errors import InvalidSignal
from riskloop.models import Action, TradingSignal

logger = logging.getLogger(__name__)

MIN_LEVERAGE = 1.0
MAX_LEVERAGE = 12.0


def signal_problems(signal: TradingSignal) -> List[str]:
    """
    List every invariant the signal violates.

    Args:
        signal: Signal to check

    Returns:
        Empty list when the signal is valid
    """
    problems = []

    if not isinstance(signal.action, Action):
        problems.append(f"action {signal.action!r} not in {[a.value for a in Action]}")

    numbers = {
        "confidence": signal.confidence,
        "entry_price": signal.entry_price,
        "stop_loss": signal.stop_loss,
        "position_size_usd": signal.position_size_usd,
        "leverage": signal.leverage,
        "risk_reward_ratio": signal.risk_reward_ratio,
    }
    for name, value in numbers.items():
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
            problems.append(f"{name} is not a finite number: {value!r}")
    if problems:
        return problems

    if not 0.0 <= signal.confidence <= 1.0:
        problems.append(f"confidence {signal.confidence} outside [0, 1]")
    if not MIN_LEVERAGE <= signal.leverage <= MAX_LEVERAGE:
        problems.append(f"leverage {signal.leverage} outside [{MIN_LEVERAGE:g}, {MAX_LEVERAGE:g}]")
    if signal.position_size_usd < 0:
        problems.append(f"position size {signal.position_size_usd} is negative")
    if any(not math.isfinite(tp) for tp in signal.take_profit_levels):
        problems.append("take-profit levels must be finite")

    if signal.is_entry:
        if signal.entry_price <= 0:
            problems.append(f"entry price {signal.entry_price} must be positive")
        if signal.stop_loss <= 0:
            problems.append(f"stop loss {signal.stop_loss} must be positive")

    return problems


def validate_signal(signal: TradingSignal) -> TradingSignal:
    """
    Return the signal unchanged if valid.

    Raises:
        InvalidSignal: If any invariant is violated
    """
    problems = signal_problems(signal)
    if problems:
        logger.warning(f"[REJECTED] Signal from {signal.source or 'unknown'} dropped: {'; '.join(problems)}")
        raise InvalidSignal(signal.source or "unknown", problems)
    return signal
