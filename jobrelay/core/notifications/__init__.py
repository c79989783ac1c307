"""Dead letter alerting.

Provides best-effort notifications when a job is moved to the dead letter
queue:
- Alert message model
- Generic incoming-webhook channel
"""

from jobrelay.core.notifications.client import (
    AlertChannel,
    AlertMessage,
)
from jobrelay.core.notifications.channels import (
    WebhookAlertChannel,
)

__all__ = [
    "AlertChannel",
    "AlertMessage",
    "WebhookAlertChannel",
]
