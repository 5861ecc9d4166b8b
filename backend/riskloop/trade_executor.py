"""Trade execution layer: places market orders and validates fills."""

import logging
import math

from riskloop.errors import InvalidExecutionResult, PriceNotFound, ProviderUnavailable
from riskloop.interfaces import ExecutionClient
from riskloop.models import OpenPosition, OrderResult, Side

logger = logging.getLogger(__name__)

# Order placement failures that must reach the operator as alerts
EXECUTION_ERRORS = (InvalidExecutionResult, ProviderUnavailable, PriceNotFound)


def validate_order_result(order: OrderResult, symbol: str) -> OrderResult:
    """
    Reject fills that cannot be recorded.

    Args:
        order: Fill report from the execution client
        symbol: Symbol the order was placed on

    Returns:
        The same order when valid

    Raises:
        InvalidExecutionResult: If the order id is missing or the quantity/price is not positive
    """
    problems = []
    if not order.order_id:
        problems.append("missing order id")
    if not _positive(order.executed_qty):
        problems.append(f"executed quantity {order.executed_qty}")
    if not _positive(order.executed_price):
        problems.append(f"executed price {order.executed_price}")
    if problems:
        raise InvalidExecutionResult(f"Invalid fill for {symbol}: {', '.join(problems)}")
    return order


def _positive(value) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number > 0


class TradeExecutor:
    """Handles order placement on the execution venue."""

    def __init__(self, execution_client: ExecutionClient):
        """
        Initialize the trade executor.

        Args:
            execution_client: Venue that fills market orders
        """
        self.execution_client = execution_client

    def open_position(self, symbol: str, side: Side, quantity: float) -> OrderResult:
        """
        Open a position with a market order.

        Raises:
            InvalidExecutionResult: If the fill is malformed
            ProviderUnavailable: If the venue cannot be reached
            PriceNotFound: If the venue does not know the symbol
        """
        if quantity <= 0:
            raise InvalidExecutionResult(f"Refusing to place {side.value} order for {symbol} with quantity {quantity}")
        order = self.execution_client.place_market_order(symbol, side, quantity)
        validate_order_result(order, symbol)
        logger.info(
            f"[OK] {side.value} {symbol}: filled {order.executed_qty:.6f} @ ${order.executed_price:,.4f} "
            f"(order {order.order_id})"
        )
        return order

    def close_position(self, position: OpenPosition) -> OrderResult:
        """
        Close a position with an opposite-side market order for its full quantity.

        Raises:
            InvalidExecutionResult: If the fill is malformed
            ProviderUnavailable: If the venue cannot be reached
            PriceNotFound: If the venue does not know the symbol
        """
        order = self.execution_client.place_market_order(position.symbol, position.side.opposite, position.quantity)
        validate_order_result(order, position.symbol)
        logger.info(
            f"[CLOSE] {position.side.value} {position.symbol} (trade {position.trade_id}): "
            f"filled {order.executed_qty:.6f} @ ${order.executed_price:,.4f}"
        )
        return order
