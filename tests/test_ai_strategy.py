import json

import pytest

from riskloop.errors import ProviderUnavailable, SignalExtractionError
from riskloop.models import Action
from riskloop.signal_validator import signal_problems
from riskloop.strategies.ai_strategy import AISignalProvider

from fakes import FakeCompletion, make_context, series_from, uptrend_prices


def _context():
    return make_context(series_from(uptrend_prices()))


def _fenced(payload):
    return f"Here is my decision:\n```json\n{json.dumps(payload)}\n```"


def test_fenced_response_becomes_ai_signal():
    context = _context()
    price = context.price
    completion = FakeCompletion(_fenced({
        "action": "LONG",
        "confidence": 0.75,
        "stop_loss": price * 0.98,
        "take_profit": [price * 1.04, price * 1.06],
        "leverage": 3,
        "reasoning": "Uptrend with healthy momentum",
    }))
    signal = AISignalProvider(completion).analyze(context, balance=100.0)

    assert signal.action is Action.LONG
    assert signal.source == "ai"
    assert signal.confidence == 0.75
    assert signal.leverage == 3.0
    assert signal.stop_loss == pytest.approx(price * 0.98)
    assert signal.take_profit_levels == pytest.approx((price * 1.04, price * 1.06))
    assert signal.risk_reward_ratio == pytest.approx(2.0)
    assert "fallback" not in signal.reasoning
    assert len(completion.prompts) == 1
    assert context.symbol in completion.prompts[0]


def test_prose_response_falls_back_without_raising():
    context = _context()
    completion = FakeCompletion("I think the market looks bullish, but I am not certain.")
    signal = AISignalProvider(completion).analyze(context, balance=100.0)

    assert signal.source == "ai_fallback"
    assert "AI fallback" in signal.reasoning
    assert signal_problems(signal) == []


def test_provider_retried_once_before_success():
    context = _context()
    completion = FakeCompletion(
        ProviderUnavailable("llm", "timeout"),
        _fenced({"action": "HOLD", "confidence": 0.4, "reasoning": "wait"}),
    )
    signal = AISignalProvider(completion).analyze(context, balance=100.0)

    assert len(completion.prompts) == 2
    assert signal.action is Action.HOLD
    assert signal.source == "ai"
    assert signal.confidence == 0.4


def test_provider_down_twice_falls_back():
    completion = FakeCompletion(ProviderUnavailable("llm", "connection refused"))
    signal = AISignalProvider(completion).analyze(_context(), balance=100.0)

    assert len(completion.prompts) == 2
    assert signal.source == "ai_fallback"
    assert "LLM unavailable" in signal.reasoning


def test_missing_levels_are_derived_from_volatility():
    context = _context()
    completion = FakeCompletion('{"action": "SHORT", "confidence": 0.7}')
    signal = AISignalProvider(completion).analyze(context, balance=100.0)

    assert signal.action is Action.SHORT
    assert signal.stop_loss > context.price
    assert all(tp < context.price for tp in signal.take_profit_levels)
    assert signal.leverage == AISignalProvider.DEFAULT_LEVERAGE


def test_stop_on_wrong_side_is_an_extraction_error():
    context = _context()
    provider = AISignalProvider(FakeCompletion(""))
    raw = json.dumps({"action": "LONG", "confidence": 0.8, "stop_loss": context.price * 1.01})
    with pytest.raises(SignalExtractionError):
        provider.signal_from_response(raw, context)

    signal = AISignalProvider(FakeCompletion(raw)).analyze(context, balance=100.0)
    assert signal.source == "ai_fallback"


def test_out_of_range_leverage_falls_back():
    context = _context()
    raw = json.dumps({"action": "LONG", "confidence": 0.8, "leverage": 50})
    signal = AISignalProvider(FakeCompletion(raw)).analyze(context, balance=100.0)
    assert signal.source == "ai_fallback"


def test_close_recommendation_is_kept():
    context = _context()
    raw = json.dumps({"action": "CLOSE", "confidence": 0.9, "reasoning": "take profits"})
    signal = AISignalProvider(FakeCompletion(raw)).signal_from_response(raw, context)
    assert signal.action is Action.CLOSE
    assert signal.reasoning == "take profits"
    assert signal.position_size_usd == 0.0
