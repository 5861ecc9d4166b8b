import pytest

from riskloop.errors import InsufficientHistory
from riskloop.indicators.expert_indicators import compute_expert_indicators
from riskloop.indicators.indicator_engine import IndicatorEngine

from fakes import series_from, uptrend_prices, volatile_prices


def test_requires_200_points():
    engine = IndicatorEngine()
    with pytest.raises(InsufficientHistory) as excinfo:
        engine.compute(series_from([100.0] * 199))
    assert excinfo.value.required == 200
    assert excinfo.value.available == 199
    assert excinfo.value.symbol == "BTC/USDT"


def test_same_series_gives_same_indicators():
    engine = IndicatorEngine()
    series = series_from(uptrend_prices())
    first = engine.compute(series)
    second = engine.compute(series)
    assert first == second
    assert IndicatorEngine().compute(series) == first


def test_rsi_is_100_without_losses():
    indicators = IndicatorEngine().compute(series_from(uptrend_prices()))
    assert indicators.rsi == 100.0


def test_rsi_in_range_for_alternating_prices():
    indicators = IndicatorEngine().compute(series_from(volatile_prices()))
    # 14 deltas alternate +6/-6, 7 of each
    assert indicators.rsi == pytest.approx(50.0)


def test_flat_series_has_zero_width_bands_and_volatility():
    indicators = IndicatorEngine().compute(series_from([250.0] * 220))
    assert indicators.bollinger.upper == pytest.approx(250.0)
    assert indicators.bollinger.lower == pytest.approx(250.0)
    assert indicators.bollinger.width == pytest.approx(0.0)
    assert indicators.volatility_pct == pytest.approx(0.0)
    assert indicators.momentum == pytest.approx(0.0)
    assert indicators.macd.histogram == pytest.approx(0.0)


def test_emas_are_ordered_in_an_uptrend():
    prices = uptrend_prices()
    indicators = IndicatorEngine().compute(series_from(prices))
    ema = indicators.ema
    assert prices[-1] > ema.ema9 > ema.ema21 > ema.ema50 > ema.ema200
    assert indicators.macd.value > 0
    assert indicators.macd.signal == pytest.approx(indicators.macd.value * 0.8)
    assert indicators.macd.histogram > 0


def test_momentum_and_volume_ratio():
    prices = uptrend_prices(step_pct=0.004)
    volumes = [1.0] * 249 + [3.0]
    indicators = IndicatorEngine().compute(series_from(prices, volumes=volumes))
    assert indicators.momentum == pytest.approx((prices[-1] - prices[-10]) / prices[-10] * 100)
    assert indicators.volume_ratio == pytest.approx(3.0 / (22.0 / 20))


def test_volatility_of_alternating_series():
    indicators = IndicatorEngine().compute(series_from(volatile_prices()))
    assert indicators.volatility_pct == pytest.approx(6.0 / 106.0 * 100)
    assert indicators.bollinger.middle == pytest.approx(103.0)
    assert indicators.bollinger.width == pytest.approx(12.0 / 103.0)


def test_expert_indicators_from_closes():
    prices = uptrend_prices()
    ei = compute_expert_indicators(prices, [1.0] * len(prices))
    assert ei.rsi_fast == 100.0
    assert ei.stoch == pytest.approx(100.0)
    assert ei.macd > 0
    assert ei.atr > 0
    assert ei.obv == pytest.approx(len(prices) - 1)
    assert ei.bb_upper > ei.bb_middle > ei.bb_lower


def test_expert_indicators_tolerate_short_input():
    ei = compute_expert_indicators([100.0, 101.0], [1.0, 1.0])
    assert ei.rsi_fast == 50.0
    assert ei.cci == 0.0
    assert ei.stoch == 50.0
    assert ei.atr == 0.0
