"""Job Queue Module.

Provides background job execution for deadline-bound callers:
- Immediate enqueue, asynchronous FIFO execution
- Bounded retry with linear backoff
- Dead letter hand-off for exhausted jobs
- Graceful shutdown draining
"""

from jobrelay.core.job_queue.core import (
    JobStatus,
    Job,
    Handler,
    create_job,
    generate_job_id,
    JobQueue,
    QueueStats,
)
from jobrelay.core.job_queue.shutdown import (
    ShutdownState,
    ShutdownCoordinator,
    hard_exit,
)

__all__ = [
    # Core
    "JobStatus",
    "Job",
    "Handler",
    "create_job",
    "generate_job_id",
    "JobQueue",
    "QueueStats",
    # Shutdown
    "ShutdownState",
    "ShutdownCoordinator",
    "hard_exit",
]
