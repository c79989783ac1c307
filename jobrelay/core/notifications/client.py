"""Alert primitives for permanently failed jobs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class AlertMessage:
    """A dead letter alert."""

    job_id: str
    job_type: str
    error: str
    error_category: str = "UNKNOWN"

    @property
    def text(self) -> str:
        return (
            f"[jobrelay] Job permanently failed: {self.job_type} "
            f"({self.job_id}) - {self.error}"
        )


class AlertChannel(ABC):
    """Abstract base class for alert channels."""

    name: str = "base"

    @abstractmethod
    async def send(self, message: AlertMessage) -> bool:
        """Deliver an alert. Must not raise."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if channel is properly configured."""
        pass
