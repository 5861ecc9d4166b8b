"""ccxt-backed price feed and execution clients."""

import logging
import uuid
from typing import Any, Dict, Optional

import ccxt

from riskloop.errors import InvalidExecutionResult, PriceNotFound, ProviderUnavailable
from riskloop.interfaces import ExecutionClient, PriceFeed
from riskloop.models import OrderResult, PricePoint, PriceSeries, Side

logger = logging.getLogger(__name__)


def create_exchange(
    exchange_id: str,
    api_key: Optional[str] = None,
    api_secret: Optional[str] = None,
) -> ccxt.Exchange:
    """
    Initialize a ccxt exchange client for USD-M futures.

    Args:
        exchange_id: ccxt exchange id (e.g., "binance")
        api_key: API key (optional for market data only)
        api_secret: API secret

    Returns:
        Configured ccxt exchange instance

    Raises:
        ValueError: If ccxt does not know the exchange id
    """
    exchange_class = getattr(ccxt, exchange_id, None)
    if exchange_class is None:
        raise ValueError(f"Unsupported exchange type: {exchange_id}")

    params: Dict[str, Any] = {
        "enableRateLimit": True,
        "options": {"defaultType": "future"},
    }
    if api_key and api_secret:
        params["apiKey"] = api_key
        params["secret"] = api_secret
    return exchange_class(params)


class CcxtPriceFeed(PriceFeed):
    """Price feed reading OHLCV candles and tickers through ccxt."""

    def __init__(self, exchange: ccxt.Exchange, timeframe: str = "5m"):
        self.exchange = exchange
        self.timeframe = timeframe

    def get_history(self, symbol: str, lookback: int) -> PriceSeries:
        try:
            ohlcv = self.exchange.fetch_ohlcv(symbol, self.timeframe, limit=lookback)
        except ccxt.BadSymbol as e:
            raise PriceNotFound(symbol) from e
        except (ccxt.NetworkError, ccxt.ExchangeError) as e:
            raise ProviderUnavailable("price_feed", f"{symbol}: {e}") from e

        points = []
        for candle in ohlcv or []:
            timestamp, close, volume = int(candle[0]), candle[4], candle[5]
            if close is None:
                continue
            # Exchanges occasionally repeat the still-open candle
            if points and timestamp <= points[-1].timestamp:
                continue
            points.append(PricePoint(timestamp=timestamp, price=float(close), volume=float(volume or 0.0)))

        if not points:
            raise PriceNotFound(symbol)
        return PriceSeries(symbol=symbol, points=tuple(points))

    def get_current_price(self, symbol: str) -> float:
        try:
            ticker = self.exchange.fetch_ticker(symbol)
        except ccxt.BadSymbol as e:
            raise PriceNotFound(symbol) from e
        except (ccxt.NetworkError, ccxt.ExchangeError) as e:
            raise ProviderUnavailable("price_feed", f"{symbol}: {e}") from e

        price = ticker.get("last") or ticker.get("close")
        if not price:
            raise PriceNotFound(symbol)
        return float(price)


class CcxtExecutionClient(ExecutionClient):
    """Places market orders on a ccxt exchange."""

    def __init__(self, exchange: ccxt.Exchange):
        self.exchange = exchange

    def place_market_order(self, symbol: str, side: Side, quantity: float) -> OrderResult:
        order_side = "buy" if side is Side.LONG else "sell"
        try:
            amount = float(self.exchange.amount_to_precision(symbol, quantity))
            order = self.exchange.create_order(symbol, "market", order_side, amount)
        except ccxt.BadSymbol as e:
            raise PriceNotFound(symbol) from e
        except ccxt.NetworkError as e:
            raise ProviderUnavailable("exchange", f"{symbol}: {e}") from e
        except ccxt.ExchangeError as e:
            raise InvalidExecutionResult(f"Order rejected for {symbol}: {e}") from e

        return parse_order_response(order, symbol)


def parse_order_response(order: Dict[str, Any], symbol: str) -> OrderResult:
    """
    Convert a ccxt unified order structure into an OrderResult.

    Raises:
        InvalidExecutionResult: If the order has no id or no usable fill quantity/price
    """
    order_id = order.get("id")
    filled = order.get("filled")
    average = order.get("average") or order.get("price")
    if not order_id or filled is None or average is None:
        raise InvalidExecutionResult(
            f"Incomplete order response for {symbol}: id={order_id}, filled={filled}, average={average}"
        )
    return OrderResult(
        order_id=str(order_id),
        executed_qty=float(filled),
        executed_price=float(average),
        status=str(order.get("status") or ""),
    )


class PaperExecutionClient(ExecutionClient):
    """Simulated venue that fills every market order at the feed's current price."""

    def __init__(self, price_feed: PriceFeed):
        self.price_feed = price_feed

    def place_market_order(self, symbol: str, side: Side, quantity: float) -> OrderResult:
        price = self.price_feed.get_current_price(symbol)
        order_id = f"paper-{uuid.uuid4().hex[:12]}"
        logger.info(f"[PAPER] {side.value} {quantity:.6f} {symbol} @ ${price:,.4f} ({order_id})")
        return OrderResult(order_id=order_id, executed_qty=quantity, executed_price=price, status="closed")
