"""Operator tool for the persisted dead letter queue.

Works on the DLQ file directly, so it can be used while the service is down.
Do not mutate the file (``clear``/``requeue``) while the service is running:
the service owns it and will overwrite it on its next write.

Examples:
    jobrelay-dlq list
    jobrelay-dlq --path data/dlq.json requeue job_1700000000000_ab12cd34
"""

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from typing import List, Optional

from jobrelay.core.config import get_settings
from jobrelay.core.dead_letter_queue import DeadLetterStore
from jobrelay.core.errors import DeadLetterNotFoundError


def _open_store(path: Optional[str]) -> DeadLetterStore:
    store = DeadLetterStore(path or get_settings().DLQ_PATH)
    store.load()
    return store


def _cmd_list(store: DeadLetterStore, args: argparse.Namespace) -> int:
    entries = store.list()
    if args.json:
        print(json.dumps([e.to_dict() for e in entries], ensure_ascii=False, indent=2, default=str))
        return 0
    if not entries:
        print("DLQ is empty.")
        return 0
    for e in entries:
        print(
            f"{e.id} | {e.type} | {e.error_category.value} | retries={e.retries} "
            f"| failed_at={e.failed_at.isoformat()} | error={e.error}"
        )
    return 0


def _cmd_stats(store: DeadLetterStore, args: argparse.Namespace) -> int:
    entries = store.list()
    summary = {
        "total": len(entries),
        "by_category": dict(Counter(e.error_category.value for e in entries)),
        "by_type": dict(Counter(e.type for e in entries)),
    }
    print(json.dumps(summary, indent=2))
    return 0


def _cmd_clear(store: DeadLetterStore, args: argparse.Namespace) -> int:
    count = store.clear()
    print(f"Cleared {count} DLQ entries.")
    return 0


def _cmd_requeue(store: DeadLetterStore, args: argparse.Namespace) -> int:
    try:
        entry = store.requeue(args.id)
    except DeadLetterNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    # Printed so the operator can re-submit it through the owning integration
    print(json.dumps(entry.to_dict(), ensure_ascii=False, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobrelay-dlq",
        description="Inspect and manage the jobrelay dead letter queue",
    )
    parser.add_argument("--path", default=None, help="DLQ file (defaults to DLQ_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List dead letter entries")
    p_list.add_argument("--json", action="store_true", help="Print entries as JSON")
    p_list.set_defaults(func=_cmd_list)

    sub.add_parser("stats", help="Summarise entries by category and type").set_defaults(
        func=_cmd_stats
    )
    sub.add_parser("clear", help="Remove every entry").set_defaults(func=_cmd_clear)

    p_requeue = sub.add_parser("requeue", help="Remove one entry and print it")
    p_requeue.add_argument("id", help="Entry (job) id")
    p_requeue.set_defaults(func=_cmd_requeue)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    store = _open_store(args.path)
    return args.func(store, args)


if __name__ == "__main__":
    sys.exit(main())
