"""
Execution contexts for cross-thread handoff.

The frame processor never touches the display from its worker thread; it
dispatches a delivery callable to the presentation context. Every context
here runs dispatched callables one at a time in dispatch order.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

logger = logging.getLogger(__name__)


class ExecutionContext(ABC):
    """A FIFO place to run work."""

    @abstractmethod
    def dispatch(self, fn: Callable[[], None]) -> None:
        """Schedule fn to run on this context."""

    def close(self) -> None:
        """Stop accepting work."""


class InlineContext(ExecutionContext):
    """Runs work immediately on the dispatching thread."""

    def dispatch(self, fn: Callable[[], None]) -> None:
        fn()


class ThreadContext(ExecutionContext):
    """A dedicated single worker thread."""

    def __init__(self, name: str = "presentation"):
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def dispatch(self, fn: Callable[[], None]) -> None:
        future = self._executor.submit(fn)
        future.add_done_callback(self._log_failure)

    def _log_failure(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Work on {self.name} context failed: {error}")

    def close(self) -> None:
        self._executor.shutdown(wait=True)


class AsyncioContext(ExecutionContext):
    """Runs work on an asyncio event loop (typically the UI loop)."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    def dispatch(self, fn: Callable[[], None]) -> None:
        try:
            self._loop.call_soon_threadsafe(fn)
        except RuntimeError:
            logger.debug("Presentation loop closed, dropping dispatched work")
