"""Dead Letter Queue Module.

Durable record of jobs that exhausted their retry budget:
- Error categorisation for triage
- Atomic JSON persistence (write temp file, then rename)
- Inspection, bulk clear and explicit requeue
- Best-effort alerting on every new entry

Entries are terminal. Nothing here re-injects work into the job queue; an
operator (or the caller of ``requeue``) decides what happens next.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Union

from jobrelay.core.errors import DeadLetterNotFoundError, PersistenceError

if TYPE_CHECKING:
    from jobrelay.core.job_queue.core import Job
    from jobrelay.core.notifications import AlertChannel

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Coarse classification of a failure, derived from its message."""
    NETWORK = "NETWORK"
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER = "SERVER"
    UNKNOWN = "UNKNOWN"


# Checked in order; the first category with a matching marker wins
_CATEGORY_MARKERS = (
    (ErrorCategory.NETWORK, (
        "ECONNREFUSED", "ECONNRESET", "ETIMEDOUT", "ENOTFOUND", "NETWORK",
        "TIMEOUT", "TIMED OUT", "CONNECTION REFUSED", "CONNECTION RESET",
        "NAME OR SERVICE NOT KNOWN",
    )),
    (ErrorCategory.AUTH, ("401", "403", "AUTH", "FORBIDDEN")),
    (ErrorCategory.RATE_LIMIT, ("429", "RATE")),
    (ErrorCategory.SERVER, ("500", "502", "503", "504", "SERVER")),
)


def categorize_error(error_text: Optional[str]) -> ErrorCategory:
    """Map a free-text error to a category. Best effort, not authoritative."""
    if not error_text:
        return ErrorCategory.UNKNOWN
    text = str(error_text).upper()
    for category, markers in _CATEGORY_MARKERS:
        if any(marker in text for marker in markers):
            return category
    return ErrorCategory.UNKNOWN


def _format_ts(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _parse_ts(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    if not isinstance(value, str):
        raise TypeError(f"expected an ISO-8601 string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class DeadLetterEntry:
    """A permanently failed job."""

    id: str
    type: str
    payload: Any = None
    error: str = ""
    error_category: ErrorCategory = ErrorCategory.UNKNOWN
    retries: int = 0
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "error": self.error,
            "errorCategory": self.error_category.value,
            "retries": self.retries,
            "failedAt": _format_ts(self.failed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeadLetterEntry":
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        if data.get("id") in (None, ""):
            raise KeyError("id")
        # Older files stored the payload under "data"
        payload = data["payload"] if "payload" in data else data.get("data")
        error = str(data.get("error") or "")
        category = data.get("errorCategory")
        try:
            error_category = ErrorCategory(category) if category else categorize_error(error)
        except ValueError:
            error_category = ErrorCategory.UNKNOWN

        return cls(
            id=str(data["id"]),
            type=str(data.get("type", "")),
            payload=payload,
            error=error,
            error_category=error_category,
            retries=int(data.get("retries", 0)),
            failed_at=_parse_ts(data.get("failedAt")),
        )

    @classmethod
    def from_job(cls, job: "Job") -> "DeadLetterEntry":
        error = job.last_error or ""
        return cls(
            id=job.id,
            type=job.type,
            payload=job.payload,
            error=error,
            error_category=categorize_error(error),
            retries=job.retries,
        )


class DeadLetterStore:
    """Disk-backed, append-only list of dead letter entries.

    The whole list is rewritten on every mutation. The on-disk file is always
    either the previous valid state or the new one, never a partial write.
    """

    def __init__(
        self,
        path: Union[str, Path],
        alert_channel: Optional["AlertChannel"] = None,
    ):
        self._path = Path(path)
        self._entries: List[DeadLetterEntry] = []
        self._alert_channel = alert_channel
        self._alert_tasks: Set[asyncio.Task] = set()

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> int:
        """Read persisted entries. Missing or unreadable files start empty.

        Malformed items are skipped one by one. Anything dropped is kept in a
        ``.corrupt`` copy of the file.
        """
        if not self._path.exists():
            logger.info(f"No dead letter file at {self._path}, starting empty")
            self._entries = []
            return 0

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError(f"expected a JSON array, got {type(raw).__name__}")
        except (OSError, ValueError) as e:
            logger.warning(
                f"Failed to load dead letter file {self._path}: {e}",
                extra={"extra_fields": {"path": str(self._path), "error": str(e)}},
            )
            self._backup_unreadable_file()
            self._entries = []
            return 0

        entries: List[DeadLetterEntry] = []
        for index, item in enumerate(raw):
            try:
                entries.append(DeadLetterEntry.from_dict(item))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(
                    f"Skipping malformed dead letter entry #{index} in {self._path}: {e!r}",
                    extra={"extra_fields": {"path": str(self._path), "index": index}},
                )
        if len(entries) < len(raw):
            self._backup_unreadable_file()

        self._entries = entries
        logger.info(f"Loaded {len(entries)} dead letter entries from {self._path}")
        return len(entries)

    def _backup_unreadable_file(self) -> None:
        # The next write replaces the file, so keep what could not be loaded
        backup = self._path.with_name(self._path.name + ".corrupt")
        try:
            shutil.copyfile(self._path, backup)
        except OSError as e:
            logger.error(f"Failed to back up dead letter file {self._path} to {backup}: {e}")
            return
        logger.warning(f"Copied unreadable dead letter file to {backup}")

    def _write(self) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        snapshot = [entry.to_dict() for entry in self._entries]
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(snapshot, handle, ensure_ascii=False, indent=2, default=str)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            try:
                if tmp_path.exists():
                    tmp_path.unlink()
            except OSError:
                pass
            raise PersistenceError(f"failed to persist dead letter file {self._path}: {e}") from e

    def _persist(self) -> bool:
        try:
            self._write()
        except PersistenceError as e:
            # The in-memory state still holds the change; it is lost only on a crash
            logger.error(
                str(e),
                extra={"extra_fields": {"path": str(self._path), "entries": len(self._entries)}},
            )
            return False
        return True

    def append(self, entry: DeadLetterEntry) -> DeadLetterEntry:
        """Record an entry, persist it and fire the alert hook."""
        self._entries.append(entry)
        self._persist()
        logger.error(
            f"Job moved to dead letter queue: {entry.type} (ID: {entry.id})",
            extra={"extra_fields": entry.to_dict()},
        )
        self._schedule_alert(entry)
        return entry

    def record_failure(self, job: "Job") -> DeadLetterEntry:
        """Build an entry from a job that exhausted its retries and append it."""
        return self.append(DeadLetterEntry.from_job(job))

    def list(self) -> List[DeadLetterEntry]:
        return copy.deepcopy(self._entries)

    def get(self, entry_id: str) -> Optional[DeadLetterEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return copy.deepcopy(entry)
        return None

    def clear(self) -> int:
        count = len(self._entries)
        self._entries = []
        self._persist()
        logger.info(f"Cleared {count} dead letter entries")
        return count

    def requeue(self, entry_id: str) -> DeadLetterEntry:
        """Remove and return an entry. The caller re-enqueues it if wanted."""
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                del self._entries[index]
                self._persist()
                logger.info(f"Removed dead letter entry {entry_id} for requeue")
                return entry
        raise DeadLetterNotFoundError(f"DLQ entry not found: {entry_id}")

    def _schedule_alert(self, entry: DeadLetterEntry) -> None:
        channel = self._alert_channel
        if channel is None or not channel.is_configured():
            return

        from jobrelay.core.notifications import AlertMessage

        message = AlertMessage(
            job_id=entry.id,
            job_type=entry.type,
            error=entry.error,
            error_category=entry.error_category.value,
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, alert for job {entry.id} skipped")
            return

        task = loop.create_task(channel.send(message))
        self._alert_tasks.add(task)
        task.add_done_callback(self._on_alert_done)

    def _on_alert_done(self, task: asyncio.Task) -> None:
        self._alert_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Alert delivery raised: {exc}")

    async def wait_for_alerts(self, timeout: Optional[float] = None) -> None:
        """Await alerts still in flight (used on shutdown and in tests)."""
        pending = list(self._alert_tasks)
        if not pending:
            return
        await asyncio.wait(pending, timeout=timeout)


__all__ = [
    "ErrorCategory",
    "DeadLetterEntry",
    "DeadLetterStore",
    "categorize_error",
]
