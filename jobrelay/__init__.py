"""Background job relay for deadline-bound chat integrations.

Slash commands and interactive actions must be acknowledged within a few
seconds; the slow downstream work is handed to ``jobrelay.core.job_queue``
and failures that survive every retry land in the dead letter queue.
"""

__version__ = "0.1.0"
