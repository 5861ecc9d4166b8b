"""Graceful shutdown on SIGINT/SIGTERM."""

import logging
import signal

logger = logging.getLogger(__name__)

_SIGNAL_NAMES = {signal.SIGINT: "SIGINT", signal.SIGTERM: "SIGTERM"}


class ShutdownService:
    """Stops the scheduler once; the cycle in progress is allowed to finish."""

    def __init__(self, loop_controller):
        """
        Args:
            loop_controller: Anything with a stop() method (LoopController, CycleScheduler)
        """
        self.loop_controller = loop_controller
        self.shutdown_requested = False

    def shutdown(self) -> None:
        if self.shutdown_requested:
            logger.info("Shutdown already in progress")
            return
        self.shutdown_requested = True
        logger.warning("[HALTED] Shutdown requested, waiting for the current cycle to finish")
        self.loop_controller.stop()

    def handle_signal(self, signum, frame) -> None:
        logger.info(f"Received {_SIGNAL_NAMES.get(signum, signum)}")
        self.shutdown()

    def register_signal_handlers(self) -> None:
        """Route SIGINT (Ctrl+C) and SIGTERM to shutdown()."""
        for signum in _SIGNAL_NAMES:
            signal.signal(signum, self.handle_signal)
        logger.info("Signal handlers registered (SIGINT, SIGTERM)")
