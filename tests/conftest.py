import os
import pytest


# Environment variables read by jobrelay.core.config.Settings
_ENV_VARS_TO_ISOLATE = [
    "LOG_LEVEL",
    "LOG_JSON",
    "ENVIRONMENT",
    "DLQ_PATH",
    "ALERT_WEBHOOK_URL",
    "ALERT_TIMEOUT_SECONDS",
    "JOB_MAX_RETRIES",
    "JOB_RETRY_DELAY_MS",
    "QUEUE_MAX_SIZE",
    "SHUTDOWN_MAX_WAIT_SECONDS",
    "SHUTDOWN_POLL_INTERVAL_SECONDS",
]


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables and the settings cache between tests."""
    from jobrelay.core.config import reset_settings

    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    reset_settings()
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        reset_settings()


@pytest.fixture
def dlq_path(tmp_path):
    return tmp_path / "data" / "dlq.json"


@pytest.fixture
def dead_letters(dlq_path):
    from jobrelay.core.dead_letter_queue import DeadLetterStore

    store = DeadLetterStore(dlq_path)
    store.load()
    return store


@pytest.fixture
def sleeps():
    """Recorded backoff delays; see ``fast_sleep``."""
    return []


@pytest.fixture
def fast_sleep(sleeps):
    """Backoff sleep that records the delay and only yields to the loop."""
    import asyncio

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)
        await asyncio.sleep(0)

    return _sleep


@pytest.fixture
def queue(dead_letters, fast_sleep):
    from jobrelay.core.job_queue import JobQueue

    return JobQueue(dead_letters, sleep=fast_sleep)
