"""Alert channel implementations."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import httpx

from jobrelay.core.errors import AlertDeliveryError

from .client import AlertChannel, AlertMessage

logger = logging.getLogger(__name__)


class WebhookAlertChannel(AlertChannel):
    """Posts ``{"text": ...}`` to an incoming webhook (Slack compatible)."""

    name = "webhook"

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.webhook_url = webhook_url or os.getenv("ALERT_WEBHOOK_URL", "")
        self.timeout_seconds = timeout_seconds
        self.headers = headers or {}

        if "Content-Type" not in self.headers:
            self.headers["Content-Type"] = "application/json"

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def _build_payload(self, message: AlertMessage) -> Dict[str, Any]:
        return {"text": message.text}

    async def deliver(self, message: AlertMessage) -> None:
        """Post the alert, raising ``AlertDeliveryError`` on any failure."""
        if not self.is_configured():
            raise AlertDeliveryError("alert webhook url is not configured")
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.webhook_url,
                    json=self._build_payload(message),
                    headers=self.headers,
                    timeout=self.timeout_seconds,
                )
        except httpx.HTTPError as e:
            raise AlertDeliveryError(f"alert webhook request failed: {e}") from e

        if response.status_code not in (200, 201, 202, 204):
            raise AlertDeliveryError(
                f"alert webhook returned {response.status_code}: {response.text[:200]}"
            )

    async def send(self, message: AlertMessage) -> bool:
        try:
            await self.deliver(message)
        except AlertDeliveryError as e:
            logger.error(f"Alert webhook failed for job {message.job_id}: {e}")
            return False
        logger.info(f"Alert sent for job {message.job_id}")
        return True
