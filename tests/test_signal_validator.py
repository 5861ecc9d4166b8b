from dataclasses import replace

import pytest

from riskloop.errors import InvalidSignal
from riskloop.models import Action, TradingSignal
from riskloop.signal_validator import signal_problems, validate_signal


def _long_signal(**overrides):
    signal = TradingSignal(
        action=Action.LONG,
        confidence=0.7,
        entry_price=100.0,
        stop_loss=97.0,
        take_profit_levels=(104.0, 106.0),
        position_size_usd=10.0,
        leverage=3.0,
        risk_reward_ratio=1.33,
        reasoning="test",
        symbol="BTC/USDT",
        source="unit",
    )
    return replace(signal, **overrides)


def test_valid_signal_passes_unchanged():
    signal = _long_signal()
    assert signal_problems(signal) == []
    assert validate_signal(signal) is signal


def test_hold_signal_is_valid():
    assert signal_problems(TradingSignal.hold("BTC/USDT", 100.0, "nothing to do")) == []


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"confidence": 1.2}, "confidence"),
        ({"confidence": -0.1}, "confidence"),
        ({"leverage": 0.5}, "leverage"),
        ({"leverage": 15.0}, "leverage"),
        ({"position_size_usd": -1.0}, "position size"),
        ({"stop_loss": float("nan")}, "stop_loss"),
        ({"entry_price": float("inf")}, "entry_price"),
        ({"entry_price": 0.0}, "entry price"),
        ({"take_profit_levels": (float("inf"),)}, "take-profit"),
    ],
)
def test_invariant_violations_are_reported(overrides, fragment):
    problems = signal_problems(_long_signal(**overrides))
    assert problems
    assert any(fragment in problem for problem in problems)


def test_validate_raises_with_source_and_problems():
    with pytest.raises(InvalidSignal) as excinfo:
        validate_signal(_long_signal(confidence=2.0, leverage=20.0))
    assert excinfo.value.source == "unit"
    assert len(excinfo.value.problems) == 2
