"""Tests for the DLQ operator CLI and the composition root."""

import asyncio
import json

import pytest

from jobrelay.cli import main as cli_main
from jobrelay.core.dead_letter_queue import DeadLetterEntry, DeadLetterStore, ErrorCategory


@pytest.fixture
def populated(dlq_path):
    store = DeadLetterStore(dlq_path)
    store.append(
        DeadLetterEntry(
            id="job_1",
            type="create_task",
            payload={"name": "Write docs"},
            error="connect ECONNREFUSED",
            error_category=ErrorCategory.NETWORK,
            retries=3,
        )
    )
    store.append(
        DeadLetterEntry(
            id="job_2",
            type="update_status",
            payload={"item": 7},
            error="Request failed with status code 429",
            error_category=ErrorCategory.RATE_LIMIT,
            retries=3,
        )
    )
    return dlq_path


class TestCli:
    """Tests for jobrelay.cli."""

    def test_list_empty(self, dlq_path, capsys):
        assert cli_main(["--path", str(dlq_path), "list"]) == 0
        assert "DLQ is empty." in capsys.readouterr().out

    def test_list_entries(self, populated, capsys):
        assert cli_main(["--path", str(populated), "list"]) == 0
        out = capsys.readouterr().out
        assert "job_1 | create_task | NETWORK | retries=3" in out
        assert "job_2 | update_status | RATE_LIMIT" in out

    def test_list_json(self, populated, capsys):
        assert cli_main(["--path", str(populated), "list", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [e["id"] for e in data] == ["job_1", "job_2"]

    def test_stats(self, populated, capsys):
        assert cli_main(["--path", str(populated), "stats"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["total"] == 2
        assert summary["by_category"] == {"NETWORK": 1, "RATE_LIMIT": 1}

    def test_requeue_prints_and_removes(self, populated, capsys):
        assert cli_main(["--path", str(populated), "requeue", "job_1"]) == 0
        printed = json.loads(capsys.readouterr().out)
        assert printed["payload"] == {"name": "Write docs"}

        remaining = json.loads(populated.read_text(encoding="utf-8"))
        assert [e["id"] for e in remaining] == ["job_2"]

    def test_requeue_not_found(self, populated, capsys):
        assert cli_main(["--path", str(populated), "requeue", "nope"]) == 1
        assert "DLQ entry not found: nope" in capsys.readouterr().err

    def test_clear(self, populated, capsys):
        assert cli_main(["--path", str(populated), "clear"]) == 0
        assert "Cleared 2 DLQ entries." in capsys.readouterr().out
        assert json.loads(populated.read_text(encoding="utf-8")) == []

    def test_path_from_settings(self, populated, monkeypatch, capsys):
        monkeypatch.setenv("DLQ_PATH", str(populated))
        assert cli_main(["list"]) == 0
        assert "job_1" in capsys.readouterr().out


class TestRuntime:
    """Tests for jobrelay.main.build_runtime."""

    def test_build_runtime_loads_dead_letters(self, populated):
        from jobrelay.core.config import Settings
        from jobrelay.main import build_runtime

        runtime = build_runtime(
            Settings(DLQ_PATH=str(populated), JOB_MAX_RETRIES=4, QUEUE_MAX_SIZE=10)
        )

        assert len(runtime.dead_letters) == 2
        assert runtime.queue.dead_letters is runtime.dead_letters
        assert [e.id for e in runtime.queue.get_dead_letter_entries()] == ["job_1", "job_2"]

    def test_alert_channel_only_when_configured(self, dlq_path):
        from jobrelay.core.config import Settings
        from jobrelay.main import build_runtime

        plain = build_runtime(Settings(DLQ_PATH=str(dlq_path), ALERT_WEBHOOK_URL=""))
        assert plain.dead_letters._alert_channel is None

        alerting = build_runtime(
            Settings(DLQ_PATH=str(dlq_path), ALERT_WEBHOOK_URL="https://hooks.example.com/x")
        )
        assert alerting.dead_letters._alert_channel.webhook_url == "https://hooks.example.com/x"

    @pytest.mark.asyncio
    async def test_run_forever_until_shutdown(self, dlq_path):
        from jobrelay.core.config import Settings
        from jobrelay.main import build_runtime, run_forever

        codes = []
        runtime = build_runtime(
            Settings(DLQ_PATH=str(dlq_path), SHUTDOWN_POLL_INTERVAL_SECONDS=0.01),
            exit_func=codes.append,
        )
        loop = asyncio.get_running_loop()

        server = asyncio.ensure_future(run_forever(runtime))
        await asyncio.sleep(0.01)

        done = []
        runtime.queue.enqueue("ack", lambda p: done.append(p), "payload")
        await runtime.shutdown.shutdown("SIGTERM")
        await asyncio.wait_for(server, timeout=1)

        assert done == ["payload"]
        assert codes == [0]

        import signal

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
