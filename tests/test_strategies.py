from datetime import timedelta

import pytest

from riskloop.models import Action, EMAValues, MACDValues, RegimeType, Side, Urgency
from riskloop.strategies.expert_strategy import ExpertSignalProvider
from riskloop.strategies.technical_strategy import TechnicalSignalProvider
from riskloop.strategies.ultra_strategy import UltraSignalProvider, classify_trend

from fakes import (
    NOW,
    context_with,
    downtrend_prices,
    make_context,
    make_indicators,
    make_position,
    make_regime,
    series_from,
    uptrend_prices,
)


# Technical

def test_technical_momentum_breakout_goes_long():
    prices = uptrend_prices(step_pct=0.004)
    context = make_context(series_from(prices, volumes=[1.0] * 249 + [3.0]))
    signal = TechnicalSignalProvider().analyze(context, balance=100.0)

    assert signal.action is Action.LONG
    assert signal.confidence == pytest.approx(0.85)
    assert signal.source == "technical"
    assert signal.stop_loss < signal.entry_price < signal.take_profit_levels[0]
    assert list(signal.take_profit_levels) == sorted(signal.take_profit_levels)
    assert signal.risk_reward_ratio == pytest.approx(2.0)
    assert signal.leverage == 3.0
    assert signal.position_size_usd == pytest.approx(15.0)


def test_technical_holds_when_ladder_gives_poor_risk_reward():
    prices = uptrend_prices(step_pct=0.004)
    context = make_context(series_from(prices, volumes=[1.0] * 249 + [3.0]))
    provider = TechnicalSignalProvider(take_profit_atr_multiples=(1.5, 2.5, 3.5))

    signal = provider.analyze(context, balance=100.0)

    assert signal.action is Action.HOLD
    assert "Risk-reward ratio insufficient (1.67 < 1.8)" in signal.reasoning


def test_technical_rejects_empty_ladder():
    with pytest.raises(ValueError):
        TechnicalSignalProvider(take_profit_atr_multiples=())


def test_technical_mean_reversion_in_ranging_market():
    indicators = make_indicators(rsi=25.0)
    context = context_with(indicators, make_regime(RegimeType.RANGING), prices=[97.0] * 250)
    signal = TechnicalSignalProvider().analyze(context, balance=100.0)

    assert signal.action is Action.LONG
    assert signal.confidence == pytest.approx(0.8)
    assert "Mean reversion" in signal.reasoning


def test_technical_trend_following_with_confirmation():
    indicators = make_indicators(
        rsi=55.0,
        macd=MACDValues(value=0.5, signal=0.4, histogram=0.1),
        volume_ratio=1.3,
    )
    regime = make_regime(RegimeType.TRENDING_UP, strength=0.6, confidence=0.9)
    context = context_with(indicators, regime, prices=[101.0] * 250)
    signal = TechnicalSignalProvider().analyze(context, balance=100.0)

    assert signal.action is Action.LONG
    assert signal.confidence == pytest.approx(0.89)
    assert signal.leverage == 5.0


def test_technical_waits_out_volatile_market():
    context = context_with(make_indicators(volatility_pct=4.0), make_regime(RegimeType.VOLATILE, 0.8, 0.8))
    signal = TechnicalSignalProvider().analyze(context, balance=100.0)
    assert signal.action is Action.HOLD
    assert "volatility" in signal.reasoning


def test_technical_holds_without_setup():
    signal = TechnicalSignalProvider().analyze(context_with(make_indicators()), balance=100.0)
    assert signal.action is Action.HOLD
    assert signal.position_size_usd == 0.0


# Ultra

def test_classify_trend():
    up = make_indicators(ema=EMAValues(ema9=103.0, ema21=102.0, ema50=101.0, ema200=100.0), momentum=1.0)
    down = make_indicators(ema=EMAValues(ema9=97.0, ema21=98.0, ema50=99.0, ema200=100.0), momentum=-1.0)
    assert classify_trend(up) == "STRONG_UP"
    assert classify_trend(down) == "STRONG_DOWN"
    assert classify_trend(make_indicators()) == "SIDEWAYS"


def test_ultra_enters_long_on_uptrend():
    context = make_context(series_from(uptrend_prices()))
    provider = UltraSignalProvider()
    signal = provider.analyze(context, balance=100.0)

    assert provider.embeds_size
    assert signal.action is Action.LONG
    assert signal.confidence == pytest.approx(0.7)
    assert signal.urgency is Urgency.HIGH
    assert signal.leverage == 5.0
    # 30.5% risk at 5x is capped at 60% of balance
    assert signal.position_size_usd == pytest.approx(60.0)
    assert signal.stop_loss == pytest.approx(context.price * 0.975)
    assert signal.risk_reward_ratio == pytest.approx(0.8)


def test_ultra_holds_on_conflicting_indicators():
    signal = UltraSignalProvider().analyze(context_with(make_indicators()), balance=100.0)
    assert signal.action is Action.HOLD


def test_ultra_closes_long_when_short_side_scores_high():
    context = make_context(series_from(downtrend_prices()))
    position = make_position(entry_price=context.price, quantity=0.1)
    signal = UltraSignalProvider().analyze(context, balance=100.0, current_position=position)

    assert signal.action is Action.CLOSE
    assert signal.urgency is Urgency.CRITICAL


def test_ultra_closes_on_loss_beyond_five_dollars():
    context = context_with(make_indicators())
    position = make_position(entry_price=101.0, quantity=10.0)
    signal = UltraSignalProvider().analyze(context, balance=100.0, current_position=position)
    assert signal.action is Action.CLOSE


def test_ultra_keeps_small_loser_in_quiet_market():
    context = context_with(make_indicators())
    position = make_position(entry_price=100.5, quantity=1.0)
    signal = UltraSignalProvider().analyze(context, balance=100.0, current_position=position)
    assert signal.action is Action.HOLD


# Expert

def test_expert_holds_in_flat_market_with_half_confidence():
    context = make_context(series_from([100.0] * 250))
    signal = ExpertSignalProvider().analyze(context, balance=100.0)
    assert signal.action is Action.HOLD
    assert signal.confidence == pytest.approx(0.5)
    assert signal.source == "expert"


def test_expert_closes_on_regime_reversal():
    regime = make_regime(RegimeType.TRENDING_DOWN, strength=0.8, confidence=0.9)
    context = context_with(make_indicators(), regime)
    position = make_position(side=Side.LONG)
    signal = ExpertSignalProvider().analyze(context, balance=100.0, current_position=position)

    assert signal.action is Action.CLOSE
    assert signal.confidence == pytest.approx(0.9)
    assert "regime" in signal.reasoning.lower()


def test_expert_trailing_stop_locks_in_profit():
    prices = [100.0] * 240 + [104.0, 106.0, 108.0, 110.0, 110.0, 110.0, 109.0, 108.5, 108.0, 107.5]
    context = context_with(make_indicators(), make_regime(RegimeType.RANGING), prices=prices)
    position = make_position(entry_price=100.0, opened_at=NOW - timedelta(hours=1))
    signal = ExpertSignalProvider().analyze(context, balance=100.0, current_position=position)

    assert signal.action is Action.CLOSE
    assert "Trailing stop" in signal.reasoning


def test_expert_keeps_valid_position():
    context = context_with(make_indicators(), make_regime(RegimeType.RANGING))
    position = make_position(entry_price=100.0)
    signal = ExpertSignalProvider().analyze(context, balance=100.0, current_position=position)
    assert signal.action is Action.HOLD
