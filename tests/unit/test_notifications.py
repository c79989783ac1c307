"""Tests for the dead letter alert webhook channel."""

import json

import httpx
import pytest

from jobrelay.core.errors import AlertDeliveryError
from jobrelay.core.notifications import AlertMessage, WebhookAlertChannel


def _patch_client(monkeypatch, handler):
    real_client = httpx.AsyncClient
    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(httpx, "AsyncClient", lambda *a, **kw: real_client(transport=transport))


def _message():
    return AlertMessage(
        job_id="job_1",
        job_type="create_task",
        error="connect ECONNREFUSED",
        error_category="NETWORK",
    )


class TestWebhookAlertChannel:
    """Tests for WebhookAlertChannel."""

    def test_not_configured_without_url(self, monkeypatch):
        monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)
        assert WebhookAlertChannel().is_configured() is False

    def test_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.com/T/B/X")
        channel = WebhookAlertChannel()
        assert channel.is_configured() is True
        assert channel.webhook_url == "https://hooks.example.com/T/B/X"

    def test_message_text(self):
        text = _message().text
        assert text == "[jobrelay] Job permanently failed: create_task (job_1) - connect ECONNREFUSED"

    @pytest.mark.asyncio
    async def test_posts_text_payload(self, monkeypatch):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        _patch_client(monkeypatch, handler)
        channel = WebhookAlertChannel("https://hooks.example.com/alert")

        assert await channel.send(_message()) is True
        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/alert"
        assert json.loads(request.content) == {"text": _message().text}
        assert request.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_error_status_returns_false(self, monkeypatch, caplog):
        _patch_client(monkeypatch, lambda request: httpx.Response(500, text="nope"))
        channel = WebhookAlertChannel("https://hooks.example.com/alert")

        with caplog.at_level("ERROR"):
            assert await channel.send(_message()) is False
        assert "Alert webhook failed for job job_1" in caplog.text

        with pytest.raises(AlertDeliveryError, match="returned 500"):
            await channel.deliver(_message())

    @pytest.mark.asyncio
    async def test_connection_error_returns_false(self, monkeypatch):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        _patch_client(monkeypatch, handler)
        channel = WebhookAlertChannel("https://hooks.example.com/alert")

        assert await channel.send(_message()) is False
        with pytest.raises(AlertDeliveryError, match="request failed"):
            await channel.deliver(_message())

    @pytest.mark.asyncio
    async def test_deliver_requires_url(self, monkeypatch):
        monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)
        with pytest.raises(AlertDeliveryError):
            await WebhookAlertChannel().deliver(_message())

    @pytest.mark.asyncio
    async def test_dead_letter_append_posts_alert(self, monkeypatch, dlq_path):
        from jobrelay.core.dead_letter_queue import DeadLetterStore
        from jobrelay.core.job_queue import JobQueue

        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        _patch_client(monkeypatch, handler)
        store = DeadLetterStore(dlq_path, alert_channel=WebhookAlertChannel("https://hooks.example.com/a"))
        queue = JobQueue(store, default_retry_delay_ms=0)

        async def failing(payload):
            raise RuntimeError("Request failed with status code 503")

        job = queue.enqueue("sync_board", failing, max_retries=1)
        await queue.join(timeout=1)
        await store.wait_for_alerts(timeout=1)

        assert bodies == [
            {"text": f"[jobrelay] Job permanently failed: sync_board ({job.id}) - "
                     "Request failed with status code 503"}
        ]
