"""Loop controller: wires every component from Config and exposes operator commands."""

import logging
from typing import Any, Dict, List, Optional

from riskloop.arbitrator import SignalArbitrator
from riskloop.circuit_breaker import CircuitBreaker, RiskRegistry
from riskloop.config import CircuitBreakerConfig, Config
from riskloop.controllers.agent_processor import AgentProcessor
from riskloop.controllers.cycle_controller import CycleController
from riskloop.decision_provider import OpenAICompletionProvider
from riskloop.exchange_adapters.ccxt_adapter import (
    CcxtExecutionClient,
    CcxtPriceFeed,
    PaperExecutionClient,
    create_exchange,
)
from riskloop.interfaces import AlertSink, ExecutionClient, Persistence, PriceFeed, TextCompletionProvider
from riskloop.logger import CycleLogger
from riskloop.managers.position_monitor import PositionMonitor
from riskloop.market_data import MarketDataService
from riskloop.memory.in_memory_store import InMemoryPersistence, load_agents_file
from riskloop.memory.json_file_store import JsonFilePersistence
from riskloop.models import Agent, AgentRiskState, CycleSummary, SchedulerStatus
from riskloop.position_sizer import PositionSizer
from riskloop.scheduler import CycleScheduler
from riskloop.services.alert_service import AlertService, LoggingAlertSink, TelegramAlertSink
from riskloop.strategies.ai_strategy import AISignalProvider
from riskloop.strategies.expert_strategy import ExpertSignalProvider
from riskloop.strategies.technical_strategy import TechnicalSignalProvider
from riskloop.strategies.ultra_strategy import UltraSignalProvider
from riskloop.trade_executor import TradeExecutor

logger = logging.getLogger(__name__)


class LoopController:
    """Builds the trading loop and is the single entry point for callers (CLI, HTTP API)."""

    def __init__(
        self,
        config: Config,
        persistence: Optional[Persistence] = None,
        price_feed: Optional[PriceFeed] = None,
        execution_client: Optional[ExecutionClient] = None,
        completion_provider: Optional[TextCompletionProvider] = None,
        alert_sinks: Optional[List[AlertSink]] = None,
    ):
        """
        Initialize loop controller with all components.

        Collaborators not passed in are built from the configuration.

        Args:
            config: Configuration object
            persistence: Agent and trade store (default: JSON state file, or in-memory without STATE_FILE)
            price_feed: Market data source (default: ccxt)
            execution_client: Order venue (default: paper fills, or ccxt in live mode)
            completion_provider: LLM backend (default: OpenAI-compatible when LLM_API_KEY is set)
            alert_sinks: Alert channels (default: Telegram when configured, else the log)
        """
        self.config = config
        logger.info("Initializing loop controller components...")

        self.persistence = persistence or self._init_persistence(config)

        exchange = None
        if price_feed is None or (execution_client is None and config.run_mode == "live"):
            exchange = create_exchange(config.exchange_id, config.exchange_api_key, config.exchange_api_secret)
        if price_feed is None:
            price_feed = CcxtPriceFeed(exchange, config.timeframe)
        if execution_client is None:
            execution_client = self._init_execution_client(config, exchange, price_feed)
        self.price_feed = price_feed

        self.alerts = AlertService(alert_sinks if alert_sinks is not None else self._init_alert_sinks(config))
        self.market_data = MarketDataService(price_feed, lookback=config.history_lookback)
        self.arbitrator = self._init_arbitrator(config, completion_provider)
        self.sizer = PositionSizer(config.sizing)
        self.registry = RiskRegistry()
        self.circuit_breaker = CircuitBreaker(config.circuit_breaker, self.persistence, self.registry)
        self.executor = TradeExecutor(execution_client)

        self.monitor = PositionMonitor(
            self.persistence,
            self.market_data,
            self.executor,
            self.registry,
            alerts=self.alerts,
            config=config.monitor,
            pacing_seconds=config.position_pacing_seconds,
        )
        self.processor = AgentProcessor(
            self.persistence,
            self.market_data,
            self.arbitrator,
            self.sizer,
            self.circuit_breaker,
            self.executor,
            self.monitor,
            alerts=self.alerts,
            default_symbols=config.symbols,
        )
        self.cycle_controller = CycleController(
            self.persistence,
            self.monitor,
            self.processor,
            self.circuit_breaker,
            alerts=self.alerts,
            cycle_logger=CycleLogger(config.cycle_log_file),
            agent_pacing_seconds=config.agent_pacing_seconds,
            max_workers=config.max_workers,
        )
        self.scheduler = CycleScheduler(self.cycle_controller, config.cycle_interval_minutes, self.alerts)

        logger.info("Loop controller initialized successfully")

    def _init_persistence(self, config: Config) -> Persistence:
        if config.state_file:
            persistence: InMemoryPersistence = JsonFilePersistence(config.state_file)
        else:
            logger.warning("No STATE_FILE set, agents and open trades are lost on restart")
            persistence = InMemoryPersistence()

        if persistence.list_agents():
            # Agents restored from the state file are not re-seeded
            return persistence
        if config.agents_file:
            load_agents_file(config.agents_file, persistence)
        else:
            logger.info(f"No AGENTS_FILE set, creating default agent with ${config.mock_starting_equity:.2f}")
            persistence.save_agent(
                Agent(agent_id="default", name="Default Agent", balance=config.mock_starting_equity, symbols=list(config.symbols))
            )
        return persistence

    @staticmethod
    def _init_execution_client(config: Config, exchange, price_feed: PriceFeed) -> ExecutionClient:
        if config.run_mode == "live":
            logger.warning("LIVE MODE: orders will be sent to the exchange")
            return CcxtExecutionClient(exchange)
        logger.info("PAPER MODE: orders are filled at the current feed price")
        return PaperExecutionClient(price_feed)

    @staticmethod
    def _init_alert_sinks(config: Config) -> List[AlertSink]:
        if config.telegram_bot_token and config.telegram_chat_id:
            logger.info("Telegram alerts enabled")
            return [TelegramAlertSink(config.telegram_bot_token, config.telegram_chat_id)]
        return [LoggingAlertSink()]

    @staticmethod
    def _init_arbitrator(config: Config, completion_provider: Optional[TextCompletionProvider]) -> SignalArbitrator:
        technical = TechnicalSignalProvider()
        if completion_provider is None and config.llm_api_key:
            completion_provider = OpenAICompletionProvider(
                config.llm_api_key, base_url=config.llm_base_url, model=config.llm_model
            )

        ai = None
        if completion_provider is not None:
            ai = AISignalProvider(completion_provider, fallback=technical)
            logger.info("AI tier enabled")
        else:
            logger.info("AI tier disabled (no LLM_API_KEY)")

        return SignalArbitrator.default_ladder(
            config.arbitration,
            aggressive=UltraSignalProvider(),
            technical=technical,
            expert=ExpertSignalProvider(),
            ai=ai,
        )

    def run_cycle_once(self) -> CycleSummary:
        return self.scheduler.run_cycle_once()

    def get_agent_risk_status(self, agent_id: str) -> Optional[AgentRiskState]:
        """Risk state for an agent; created from its stored balance if not seen yet."""
        state = self.circuit_breaker.get_agent_risk_status(agent_id)
        if state is None:
            agent = self.persistence.load_agent(agent_id)
            if agent is None:
                return None
            self.registry.get_or_create(agent_id, agent.balance)
            state = self.circuit_breaker.get_agent_risk_status(agent_id)
        return state

    def update_circuit_breaker_config(self, **changes: Any) -> CircuitBreakerConfig:
        return self.circuit_breaker.update_config(**changes)

    def circuit_breaker_status(self) -> Dict[str, Any]:
        return self.circuit_breaker.get_status()

    def trip_agent(self, agent_id: str, reason: str = "Tripped by operator") -> bool:
        tripped = self.circuit_breaker.trip_agent(agent_id, reason)
        if tripped:
            self.alerts.risk_trip(agent_id, [reason])
        return tripped

    def reset_agent(self, agent_id: str) -> None:
        self.circuit_breaker.reset_agent(agent_id)

    def emergency_stop_all(self) -> None:
        self.circuit_breaker.emergency_stop_all()
        self.alerts.emergency_stop()

    def resume(self) -> None:
        self.circuit_breaker.resume()

    def scheduler_status(self) -> SchedulerStatus:
        return self.scheduler.status()

    def start(self, interval_minutes: Optional[float] = None) -> bool:
        return self.scheduler.start(interval_minutes)

    def stop(self) -> None:
        self.scheduler.stop()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.scheduler.wait(timeout)
