"""Error taxonomy for the decision and risk-control loop."""


class RiskLoopError(Exception):
    """Base class for all errors raised by the trading core."""


class InsufficientHistory(RiskLoopError):
    """Not enough price points to compute the requested indicators."""

    def __init__(self, symbol: str, required: int, available: int):
        self.symbol = symbol
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient history for {symbol}: need {required} points, got {available}"
        )


class ProviderUnavailable(RiskLoopError):
    """A price feed, AI provider or exchange could not be reached."""

    def __init__(self, provider: str, detail: str = ""):
        self.provider = provider
        self.detail = detail
        message = f"{provider} unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PriceNotFound(RiskLoopError):
    """The price feed does not know the requested symbol."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"No price found for {symbol}")


class InvalidExecutionResult(RiskLoopError):
    """The exchange returned a fill without usable order id, quantity or price."""


class SignalExtractionError(RiskLoopError):
    """AI response text could not be turned into a valid trading signal."""


class InvalidSignal(RiskLoopError):
    """A provider produced a signal that violates the signal invariants."""

    def __init__(self, source: str, problems):
        self.source = source
        self.problems = list(problems)
        super().__init__(f"Invalid signal from {source}: {'; '.join(self.problems)}")
