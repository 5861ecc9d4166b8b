import ccxt
import pytest

from riskloop.errors import InvalidExecutionResult, PriceNotFound, ProviderUnavailable
from riskloop.exchange_adapters.ccxt_adapter import (
    CcxtExecutionClient,
    CcxtPriceFeed,
    PaperExecutionClient,
    parse_order_response,
)
from riskloop.models import OrderResult, Side
from riskloop.trade_executor import TradeExecutor, validate_order_result

from fakes import FakeExecution, FakePriceFeed, make_position


class FakeExchange:
    """Minimal stand-in for a ccxt exchange instance."""

    def __init__(self, ohlcv=None, ticker=None, order=None, error=None):
        self.ohlcv = ohlcv or []
        self.ticker = ticker or {}
        self.order = order or {}
        self.error = error
        self.created = []

    def fetch_ohlcv(self, symbol, timeframe, limit=None):
        if self.error:
            raise self.error
        return self.ohlcv

    def fetch_ticker(self, symbol):
        if self.error:
            raise self.error
        return self.ticker

    def amount_to_precision(self, symbol, amount):
        return f"{amount:.3f}"

    def create_order(self, symbol, order_type, side, amount):
        if self.error:
            raise self.error
        self.created.append((symbol, order_type, side, amount))
        return self.order


@pytest.mark.parametrize(
    "order",
    [
        OrderResult("", 1.0, 100.0, "closed"),
        OrderResult("id-1", 0.0, 100.0, "closed"),
        OrderResult("id-1", 1.0, float("nan"), "closed"),
        OrderResult("id-1", 1.0, -5.0, "closed"),
    ],
)
def test_invalid_fills_are_rejected(order):
    with pytest.raises(InvalidExecutionResult):
        validate_order_result(order, "BTC/USDT")


def test_valid_fill_passes_through():
    order = OrderResult("id-1", 0.5, 101.0, "closed")
    assert validate_order_result(order, "BTC/USDT") is order


def test_executor_refuses_non_positive_quantity():
    execution = FakeExecution(FakePriceFeed(prices={"BTC/USDT": 100.0}))
    with pytest.raises(InvalidExecutionResult):
        TradeExecutor(execution).open_position("BTC/USDT", Side.LONG, 0.0)
    assert execution.orders == []


def test_close_uses_opposite_side_and_full_quantity():
    execution = FakeExecution(FakePriceFeed(prices={"BTC/USDT": 95.0}))
    position = make_position(side=Side.SHORT, quantity=3.0)

    order = TradeExecutor(execution).close_position(position)

    assert execution.orders == [("BTC/USDT", Side.LONG, 3.0)]
    assert order.executed_price == 95.0


def test_parse_order_response_prefers_average_price():
    order = parse_order_response({"id": 123, "filled": "0.25", "average": 101.5, "price": 99.0, "status": "closed"}, "BTC/USDT")
    assert order == OrderResult("123", 0.25, 101.5, "closed")

    fallback = parse_order_response({"id": "x", "filled": 1, "average": None, "price": 99.0}, "BTC/USDT")
    assert fallback.executed_price == 99.0
    assert fallback.status == ""


@pytest.mark.parametrize(
    "order",
    [
        {"filled": 1.0, "average": 100.0},
        {"id": "x", "average": 100.0},
        {"id": "x", "filled": 1.0},
    ],
)
def test_parse_order_response_rejects_incomplete_orders(order):
    with pytest.raises(InvalidExecutionResult):
        parse_order_response(order, "BTC/USDT")


def test_paper_client_fills_at_current_price():
    client = PaperExecutionClient(FakePriceFeed(prices={"ETH/USDT": 2500.0}))
    order = client.place_market_order("ETH/USDT", Side.SHORT, 0.2)
    assert order.order_id.startswith("paper-")
    assert order.executed_qty == 0.2
    assert order.executed_price == 2500.0


def test_ccxt_execution_client_maps_side_and_precision():
    exchange = FakeExchange(order={"id": "o-1", "filled": 0.123, "average": 100.0, "status": "closed"})
    order = CcxtExecutionClient(exchange).place_market_order("BTC/USDT", Side.SHORT, 0.12345)
    assert exchange.created == [("BTC/USDT", "market", "sell", 0.123)]
    assert order.order_id == "o-1"


def test_ccxt_execution_client_error_mapping():
    with pytest.raises(ProviderUnavailable):
        CcxtExecutionClient(FakeExchange(error=ccxt.NetworkError("timeout"))).place_market_order(
            "BTC/USDT", Side.LONG, 1.0
        )
    with pytest.raises(InvalidExecutionResult):
        CcxtExecutionClient(FakeExchange(error=ccxt.InsufficientFunds("no margin"))).place_market_order(
            "BTC/USDT", Side.LONG, 1.0
        )


def test_ccxt_price_feed_drops_repeated_candles():
    ohlcv = [
        [1000, 1, 1, 1, 100.0, 5.0],
        [2000, 1, 1, 1, 101.0, None],
        [2000, 1, 1, 1, 101.5, 7.0],
        [3000, 1, 1, 1, None, 1.0],
        [4000, 1, 1, 1, 102.0, 2.0],
    ]
    series = CcxtPriceFeed(FakeExchange(ohlcv=ohlcv)).get_history("BTC/USDT", 250)
    assert [p.timestamp for p in series.points] == [1000, 2000, 4000]
    assert series.points[1].volume == 0.0


def test_ccxt_price_feed_errors():
    with pytest.raises(PriceNotFound):
        CcxtPriceFeed(FakeExchange()).get_history("BTC/USDT", 250)
    with pytest.raises(PriceNotFound):
        CcxtPriceFeed(FakeExchange(error=ccxt.BadSymbol("unknown"))).get_current_price("XYZ/USDT")
    with pytest.raises(ProviderUnavailable):
        CcxtPriceFeed(FakeExchange(error=ccxt.ExchangeNotAvailable("down"))).get_current_price("BTC/USDT")
    assert CcxtPriceFeed(FakeExchange(ticker={"last": None, "close": 99.5})).get_current_price("BTC/USDT") == 99.5
