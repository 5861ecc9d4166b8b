import threading

import pytest

from riskloop.models import AgentOutcome, CycleSummary
from riskloop.scheduler import CycleScheduler
from riskloop.services.alert_service import AlertService

from fakes import NOW, RecordingAlertSink


class FakeCycleController:
    def __init__(self, outcomes=(), block=None, error=None):
        self.cycle_count = 0
        self.outcomes = list(outcomes)
        self.block = block
        self.error = error
        self.started = threading.Event()
        self.ran = threading.Event()

    def run_cycle_once(self, now=None):
        self.cycle_count += 1
        self.started.set()
        if self.block is not None:
            self.block.wait(5)
        if self.error is not None:
            self.ran.set()
            raise self.error
        summary = CycleSummary(cycle_number=self.cycle_count, started_at=now or NOW, finished_at=now or NOW)
        summary.outcomes.extend(self.outcomes)
        self.ran.set()
        return summary


def _scheduler(controller, interval_minutes=10.0):
    sink = RecordingAlertSink()
    return CycleScheduler(controller, interval_minutes, AlertService([sink])), sink


def test_counters_after_cycles():
    outcomes = [
        AgentOutcome("a", "executed", "LONG"),
        AgentOutcome("b", "error", "boom"),
        AgentOutcome("c", "hold", "nothing"),
    ]
    scheduler, _ = _scheduler(FakeCycleController(outcomes))

    scheduler.run_cycle_once(NOW)
    scheduler.run_cycle_once(NOW)

    status = scheduler.status()
    assert status.cycles_completed == 2
    assert status.successful_trades == 2
    assert status.failed_trades == 2
    assert status.total_trades_attempted == 4
    assert status.last_cycle_time == NOW
    assert not status.is_running


def test_overlapping_cycle_is_skipped():
    release = threading.Event()
    controller = FakeCycleController(block=release)
    scheduler, _ = _scheduler(controller)

    worker = threading.Thread(target=scheduler.run_cycle_once)
    worker.start()
    assert controller.started.wait(5)

    skipped = scheduler.run_cycle_once(NOW)
    release.set()
    worker.join(5)

    assert skipped.skipped
    assert controller.cycle_count == 1
    status = scheduler.status()
    assert status.cycles_skipped == 1
    assert status.cycles_completed == 1


def test_checkpoint_alert_every_ten_cycles():
    scheduler, sink = _scheduler(FakeCycleController())
    for _ in range(9):
        scheduler.run_cycle_once(NOW)
    assert not any("Checkpoint" in message for message in sink.messages)
    scheduler.run_cycle_once(NOW)
    assert any("Checkpoint" in message for message in sink.messages)


def test_start_runs_first_cycle_immediately_and_stop_ends_loop():
    controller = FakeCycleController()
    scheduler, _ = _scheduler(controller, interval_minutes=60.0)

    assert scheduler.start()
    assert controller.ran.wait(5)
    assert scheduler.is_running
    assert not scheduler.start()

    scheduler.stop(timeout=5)
    assert not scheduler.is_running
    assert scheduler.wait(0)


def test_failed_cycle_sends_alert_and_loop_survives():
    controller = FakeCycleController(error=RuntimeError("database gone"))
    scheduler, sink = _scheduler(controller, interval_minutes=60.0)

    scheduler.start()
    assert controller.ran.wait(5)
    scheduler.stop(timeout=5)

    assert any("database gone" in message for message in sink.messages)


def test_invalid_interval_is_rejected():
    scheduler, _ = _scheduler(FakeCycleController())
    with pytest.raises(ValueError):
        scheduler.start(interval_minutes=0)
