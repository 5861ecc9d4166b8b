"""Alert delivery for trades, closes, risk trips and cycle summaries."""

import logging
from typing import List, Optional

import requests

from riskloop.interfaces import AlertSink
from riskloop.models import (
    AgentOutcome,
    ClosedTrade,
    CycleSummary,
    OrderResult,
    SchedulerStatus,
    SizingResult,
    TradingSignal,
)

logger = logging.getLogger(__name__)


class TelegramAlertSink(AlertSink):
    """Posts alerts to a Telegram chat through the Bot API."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 5.0):
        """
        Initialize Telegram sink.

        Args:
            bot_token: Bot API token
            chat_id: Target chat id
            timeout: Request timeout in seconds
        """
        self.chat_id = chat_id
        self.timeout = timeout
        self.url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def notify(self, message: str) -> None:
        response = self.session.post(
            self.url,
            json={"chat_id": self.chat_id, "text": message, "parse_mode": "Markdown"},
            timeout=self.timeout,
        )
        response.raise_for_status()


class LoggingAlertSink(AlertSink):
    """Writes alerts to the application log. Used when no Telegram bot is configured."""

    def notify(self, message: str) -> None:
        logger.info(f"[ALERT] {message}")


class AlertService:
    """
    Formats alert messages and fans them out to every sink.

    Delivery failures are logged and swallowed so an alert can never abort a
    trading decision.
    """

    def __init__(self, sinks: Optional[List[AlertSink]] = None):
        self.sinks = sinks if sinks is not None else [LoggingAlertSink()]

    def send(self, message: str) -> bool:
        """
        Deliver a message to all sinks.

        Returns:
            True if every sink accepted the message
        """
        delivered = True
        for sink in self.sinks:
            try:
                sink.notify(message)
            except requests.exceptions.RequestException as e:
                logger.warning(f"Failed to deliver alert via {type(sink).__name__}: {e}")
                delivered = False
            except Exception as e:
                logger.warning(f"Alert sink {type(sink).__name__} raised: {e}", exc_info=True)
                delivered = False
        return delivered

    def trade_executed(
        self,
        agent_name: str,
        signal: TradingSignal,
        sizing: SizingResult,
        order: OrderResult,
    ) -> bool:
        return self.send(
            f"*Trade executed* ({agent_name})\n"
            f"{signal.action.value} {signal.symbol} @ ${order.executed_price:,.4f}\n"
            f"Qty: {order.executed_qty:.6f} | Collateral: ${sizing.collateral_usd:.2f} @ {sizing.leverage:.1f}x\n"
            f"SL: ${signal.stop_loss:,.4f} | TP: ${signal.take_profit:,.4f}\n"
            f"Confidence: {signal.confidence:.0%} ({signal.source})"
        )

    def position_closed(self, agent_name: str, trade: ClosedTrade) -> bool:
        marker = "profit" if trade.pnl >= 0 else "loss"
        return self.send(
            f"*Position closed* ({agent_name})\n"
            f"{trade.side.value} {trade.symbol}: ${trade.entry_price:,.4f} -> ${trade.exit_price:,.4f}\n"
            f"P&L: ${trade.pnl:+.2f} ({marker})\n"
            f"Reason: {trade.reason}"
        )

    def risk_trip(self, agent_id: str, reasons: List[str]) -> bool:
        return self.send(
            f"*CIRCUIT BREAKER TRIPPED* for agent {agent_id}\n"
            + "\n".join(f"- {reason}" for reason in reasons)
            + "\nNo further trades until reset."
        )

    def emergency_stop(self) -> bool:
        return self.send("*EMERGENCY STOP* activated. All new trading halted.")

    def execution_failure(self, agent_id: str, symbol: str, error: str) -> bool:
        return self.send(f"*Execution failed* for agent {agent_id} on {symbol}\n{error}\nTrade not recorded.")

    def cycle_summary(self, summary: CycleSummary) -> bool:
        lines = [
            f"*Cycle {summary.cycle_number} complete*",
            f"Positions checked: {summary.positions_checked} | closed: {summary.positions_closed}",
            f"Agents: {len(summary.outcomes)} | executed: {summary.successful} | "
            f"held: {summary.held} | failed: {summary.failed}",
        ]
        lines.extend(_outcome_line(outcome) for outcome in summary.outcomes if outcome.status == "executed")
        return self.send("\n".join(lines))

    def checkpoint(self, status: SchedulerStatus) -> bool:
        return self.send(
            f"*Checkpoint*: {status.cycles_completed} cycles completed\n"
            f"Trades attempted: {status.total_trades_attempted} | "
            f"successful: {status.successful_trades} | failed: {status.failed_trades}\n"
            f"Cycles skipped (overlap): {status.cycles_skipped}"
        )

    def cycle_error(self, cycle_number: int, error: str) -> bool:
        return self.send(f"*Cycle {cycle_number} failed*\n{error}")


def _outcome_line(outcome: AgentOutcome) -> str:
    return f"- {outcome.agent_id}: {outcome.symbol} {outcome.reason}"
