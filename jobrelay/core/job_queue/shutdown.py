"""Graceful shutdown for the job queue.

On SIGTERM/SIGINT the coordinator waits (bounded) for the processing loop to
go idle, logs final statistics and exits the process. Jobs still pending when
the wait budget runs out are lost; only the dead letter queue is persisted.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from enum import Enum
from typing import Callable, List, Optional

from jobrelay.core.job_queue.core import JobQueue

logger = logging.getLogger(__name__)


class ShutdownState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    EXITING = "exiting"


def hard_exit(code: int) -> None:
    """Flush logs and streams, then terminate without further cleanup."""
    logging.shutdown()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


class ShutdownCoordinator:
    """Drain-then-exit sequence for termination signals."""

    def __init__(
        self,
        queue: JobQueue,
        *,
        max_wait_seconds: float = 30.0,
        poll_interval_seconds: float = 0.1,
        exit_func: Optional[Callable[[int], None]] = None,
        exit_code: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._queue = queue
        self._max_wait_seconds = max_wait_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._exit_func = exit_func or hard_exit
        self._exit_code = exit_code
        self._clock = clock

        self._state = ShutdownState.RUNNING
        self._task: Optional[asyncio.Task] = None
        self._done: Optional[asyncio.Event] = None
        self.forced = False

    @property
    def state(self) -> ShutdownState:
        return self._state

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> List[signal.Signals]:
        """Register SIGTERM/SIGINT handlers on the event loop."""
        loop = loop or asyncio.get_running_loop()
        installed: List[signal.Signals] = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                # Windows, or not on the main thread
                continue
            installed.append(sig)
        return installed

    def request_shutdown(self, reason: str = "shutdown") -> asyncio.Task:
        """Start draining once; later requests return the same task."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._drain_and_exit(reason))
        else:
            logger.info(f"Received {reason}, shutdown already in progress")
        return self._task

    async def shutdown(self, reason: str = "shutdown") -> bool:
        """Drain and exit. Returns True when the queue went idle in time."""
        return await self.request_shutdown(reason)

    async def wait(self) -> None:
        """Block until a shutdown sequence has finished."""
        await self._done_event().wait()

    def _done_event(self) -> asyncio.Event:
        # Created on first use so it belongs to the running loop
        if self._done is None:
            self._done = asyncio.Event()
        return self._done

    async def _drain_and_exit(self, reason: str) -> bool:
        self._state = ShutdownState.DRAINING
        logger.info(f"Received {reason}, waiting for jobs to complete...")

        deadline = self._clock() + self._max_wait_seconds
        while self._queue.processing and self._clock() < deadline:
            await asyncio.sleep(self._poll_interval_seconds)

        self.forced = self._queue.processing
        if self.forced:
            logger.warning("Forced shutdown - some jobs may not have completed")
        else:
            logger.info("All jobs completed")

        remaining = deadline - self._clock()
        if remaining > 0:
            await self._queue.dead_letters.wait_for_alerts(timeout=remaining)

        self._state = ShutdownState.EXITING
        stats = self._queue.get_stats().to_dict()
        logger.info(f"Final stats: {stats}", extra={"extra_fields": stats})

        self._done_event().set()
        self._exit_func(self._exit_code)
        return not self.forced
