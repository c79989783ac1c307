"""
jobrelay - process entry point

Composition root: builds the dead letter store, alert channel, job queue and
shutdown coordinator from settings and hands them to whatever needs to enqueue
work. Nothing here is a module-level singleton.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from jobrelay.core.config import Settings, get_settings
from jobrelay.core.dead_letter_queue import DeadLetterStore
from jobrelay.core.job_queue import JobQueue, ShutdownCoordinator
from jobrelay.core.logging.structured import setup_structured_logging
from jobrelay.core.notifications import WebhookAlertChannel

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    dead_letters: DeadLetterStore
    queue: JobQueue
    shutdown: ShutdownCoordinator


def build_runtime(settings: Optional[Settings] = None, **coordinator_kwargs) -> Runtime:
    """Wire the queue and its collaborators. Loads the persisted DLQ."""
    settings = settings or get_settings()

    alert_channel = None
    if settings.ALERT_WEBHOOK_URL:
        alert_channel = WebhookAlertChannel(
            webhook_url=settings.ALERT_WEBHOOK_URL,
            timeout_seconds=settings.ALERT_TIMEOUT_SECONDS,
        )
        logger.info("Dead letter alert webhook configured")

    dead_letters = DeadLetterStore(settings.DLQ_PATH, alert_channel=alert_channel)
    dead_letters.load()

    queue = JobQueue(
        dead_letters,
        default_max_retries=settings.JOB_MAX_RETRIES,
        default_retry_delay_ms=settings.JOB_RETRY_DELAY_MS,
        max_queue_size=settings.QUEUE_MAX_SIZE,
    )
    shutdown = ShutdownCoordinator(
        queue,
        max_wait_seconds=settings.SHUTDOWN_MAX_WAIT_SECONDS,
        poll_interval_seconds=settings.SHUTDOWN_POLL_INTERVAL_SECONDS,
        **coordinator_kwargs,
    )
    return Runtime(settings=settings, dead_letters=dead_letters, queue=queue, shutdown=shutdown)


async def run_forever(runtime: Runtime) -> None:
    """Serve until a termination signal has been drained."""
    installed = runtime.shutdown.install()
    logger.info(
        f"jobrelay running (signals: {', '.join(s.name for s in installed) or 'none'}, "
        f"dead letters: {len(runtime.dead_letters)})"
    )
    runtime.queue.start()
    await runtime.shutdown.wait()


def main() -> None:
    settings = get_settings()
    setup_structured_logging(
        environment=settings.ENVIRONMENT,
        level=settings.LOG_LEVEL,
        json_output=settings.LOG_JSON,
    )
    asyncio.run(run_forever(build_runtime(settings)))


if __name__ == "__main__":
    main()
