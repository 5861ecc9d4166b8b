"""Cycle controller for orchestrating one trading cycle across all agents."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Callable, List, Optional

from riskloop.circuit_breaker import CircuitBreaker
from riskloop.controllers.agent_processor import AgentProcessor
from riskloop.interfaces import Persistence
from riskloop.logger import CycleLogger
from riskloop.managers.position_monitor import PositionMonitor
from riskloop.models import Agent, AgentOutcome, CycleSummary, utc_now
from riskloop.services.alert_service import AlertService

logger = logging.getLogger(__name__)


class CycleController:
    """
    Runs one cycle: position monitor first, then every eligible agent.

    Agents run sequentially with a pacing delay, or on a bounded thread pool
    when max_workers > 1. A failure in one agent never aborts the others.
    """

    def __init__(
        self,
        persistence: Persistence,
        monitor: PositionMonitor,
        processor: AgentProcessor,
        circuit_breaker: CircuitBreaker,
        alerts: Optional[AlertService] = None,
        cycle_logger: Optional[CycleLogger] = None,
        agent_pacing_seconds: float = 0.0,
        max_workers: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize cycle controller.

        Args:
            persistence: Agent store
            monitor: Position monitor, run before any new signal
            processor: Per-agent pipeline
            circuit_breaker: Consulted for the emergency stop
            alerts: Alert service for cycle summaries
            cycle_logger: JSONL cycle log
            agent_pacing_seconds: Delay between agents in sequential mode
            max_workers: Agents processed concurrently (1 = sequential)
            sleep: Sleep function used for pacing
        """
        self.persistence = persistence
        self.monitor = monitor
        self.processor = processor
        self.circuit_breaker = circuit_breaker
        self.alerts = alerts or AlertService()
        self.cycle_logger = cycle_logger
        self.agent_pacing_seconds = agent_pacing_seconds
        self.max_workers = max(1, max_workers)
        self._sleep = sleep

        self.cycle_count = 0
        self._count_lock = threading.Lock()

    def eligible_agents(self) -> List[Agent]:
        """Active agents above the balance floor, largest balance first."""
        if self.circuit_breaker.is_emergency_stopped():
            return []
        floor = self.processor.sizing_config.min_balance_floor_usd
        agents = [a for a in self.persistence.list_agents() if a.is_active and a.balance >= floor]
        return sorted(agents, key=lambda a: a.balance, reverse=True)

    def run_cycle_once(self, now: Optional[datetime] = None) -> CycleSummary:
        """
        Execute one complete cycle.

        Args:
            now: Cycle time (default: now)

        Returns:
            CycleSummary
        """
        with self._count_lock:
            self.cycle_count += 1
            cycle_number = self.cycle_count

        started_at = now or utc_now()
        summary = CycleSummary(cycle_number=cycle_number, started_at=started_at)
        logger.info(f"CYCLE {cycle_number} - {started_at.strftime('%H:%M:%S')}")

        # Step 1: close positions first so freed balance and risk state are visible to sizing
        try:
            report = self.monitor.run(started_at)
            summary.positions_checked = report.checked
            summary.positions_closed = report.closed
            summary.errors.extend(report.errors)
        except Exception as e:
            logger.error(f"[ERROR] Position monitor failed: {e}", exc_info=True)
            summary.errors.append(f"position monitor: {e}")

        # Step 2: run the pipeline for every eligible agent
        agents = self.eligible_agents()
        if self.circuit_breaker.is_emergency_stopped():
            logger.warning("Emergency stop active, skipping new-trade pipeline")
        elif not agents:
            logger.info("No eligible agents this cycle")

        if self.max_workers > 1 and len(agents) > 1:
            summary.outcomes.extend(self._run_parallel(agents, started_at))
        else:
            summary.outcomes.extend(self._run_sequential(agents, started_at))

        summary.errors.extend(o.reason for o in summary.outcomes if o.status == "error")
        summary.finished_at = utc_now()

        logger.info(
            f"CYCLE {cycle_number} COMPLETE: {summary.positions_closed} closed, "
            f"{summary.successful} executed, {summary.held} held, {summary.failed} failed"
        )
        self.alerts.cycle_summary(summary)
        if self.cycle_logger is not None:
            try:
                self.cycle_logger.log_cycle(summary)
            except OSError as e:
                logger.warning(f"Failed to write cycle log: {e}")
        return summary

    def _run_sequential(self, agents: List[Agent], now: datetime) -> List[AgentOutcome]:
        outcomes = []
        for index, agent in enumerate(agents):
            if index and self.agent_pacing_seconds > 0:
                self._sleep(self.agent_pacing_seconds)
            outcomes.append(self._process_isolated(agent, now))
        return outcomes

    def _run_parallel(self, agents: List[Agent], now: datetime) -> List[AgentOutcome]:
        by_agent = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(agents))) as executor:
            futures = {executor.submit(self._process_isolated, agent, now): agent for agent in agents}
            for future in as_completed(futures):
                outcome = future.result()
                by_agent[outcome.agent_id] = outcome
        return [by_agent[agent.agent_id] for agent in agents]

    def _process_isolated(self, agent: Agent, now: datetime) -> AgentOutcome:
        try:
            return self.processor.process(agent, now)
        except Exception as e:
            logger.error(f"[ERROR] Agent {agent.name} failed: {e}", exc_info=True)
            return AgentOutcome(agent.agent_id, "error", f"Unhandled error: {e}")
