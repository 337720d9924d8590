"""Best-effort progress reporting for pipeline milestones."""

import inspect
import logging
from typing import Any, Optional, Protocol

from .utils.background import BackgroundTaskTracker, background_tasks


logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    def report(self, percent: int, message: str) -> Any:
        ...


class LoggingProgressSink:
    """Writes milestones to the log."""

    def report(self, percent: int, message: str) -> None:
        logger.info(f"[{percent:3d}%] {message}")


class ProgressReporter:
    """
    One-way side channel to a progress sink.

    Reporting never blocks and never raises: synchronous sinks are called
    inline with errors logged, coroutine results are detached.
    """

    def __init__(self, sink: Optional[ProgressSink] = None, background: BackgroundTaskTracker = background_tasks):
        self.sink = sink
        self.background = background

    def report(self, percent: float, message: str) -> None:
        if self.sink is None:
            return
        percent = int(max(0, min(100, percent)))
        try:
            outcome = self.sink.report(percent, message)
        except Exception as e:
            logger.warning(f"Progress sink failed: {e}")
            return
        if inspect.isawaitable(outcome):
            self.background.spawn(_await(outcome), name="progress-report")


async def _await(awaitable) -> None:
    await awaitable
