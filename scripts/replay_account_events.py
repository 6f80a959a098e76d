#!/usr/bin/env python3
"""Replay account lifecycle events from a JSONL file into the binding store.

Each line is one event: {"event_id": "...", "account_id": "...", "kind": "ACCOUNT_DEACTIVATED"}.
Events are applied in file order. Replaying a file twice is safe.

Usage:
    python scripts/replay_account_events.py events.jsonl
    cat events.jsonl | python scripts/replay_account_events.py -
    python scripts/replay_account_events.py events.jsonl --db-url sqlite+pysqlite:///./connector_admin.db
"""

import argparse
import json
import logging
import os
import sys
import time
from typing import IO

# Ensure project root is importable
_PROJECT_ROOT = os.path.join(os.path.dirname(__file__), "..")
sys.path.insert(0, _PROJECT_ROOT)

from dotenv import load_dotenv
from pydantic import ValidationError

load_dotenv(os.path.join(_PROJECT_ROOT, ".env"), override=False)

from connadmin.contracts import AccountEventRequest
from connadmin.errors import InvalidArgumentError, UnavailableError
from connadmin.lifecycle import AccountEvent, LifecycleSynchronizer
from connadmin.runtime import get_lifecycle_synchronizer

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("replay_account_events")


def replay(stream: IO[str], synchronizer: LifecycleSynchronizer) -> tuple[int, int, int]:
    """Apply events line by line; returns (applied, skipped, transitioned).

    Malformed lines are skipped. A retryable store failure stops the replay so
    later events are not applied ahead of the failed one.
    """
    applied = 0
    skipped = 0
    transitioned = 0
    for line_no, line in enumerate(stream, start=1):
        if not line.strip():
            continue
        try:
            request = AccountEventRequest.model_validate(json.loads(line))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("line %d: skipping malformed event: %s", line_no, exc)
            skipped += 1
            continue

        event = AccountEvent(
            account_id=request.account_id,
            kind=request.kind,
            reason=request.reason,
            event_id=request.event_id,
        )
        try:
            outcome = synchronizer.handle(event)
        except InvalidArgumentError as exc:
            logger.warning("line %d: skipping event: %s", line_no, exc)
            skipped += 1
            continue

        applied += 1
        transitioned += outcome.transitioned
        logger.info(
            "line %d: %s %s -> %d transitioned, %d unchanged",
            line_no,
            outcome.kind,
            outcome.account_id,
            outcome.transitioned,
            outcome.unchanged,
        )
    return applied, skipped, transitioned


def main() -> int:
    parser = argparse.ArgumentParser(description="Replay account lifecycle events from JSONL")
    parser.add_argument("path", help="JSONL file of events, or '-' for stdin")
    parser.add_argument("--db-url", default=None, help="Override CONNADMIN_DB_URL")
    args = parser.parse_args()

    synchronizer = get_lifecycle_synchronizer(database_url=args.db_url)
    t0 = time.monotonic()
    try:
        if args.path == "-":
            applied, skipped, transitioned = replay(sys.stdin, synchronizer)
        else:
            with open(args.path, encoding="utf-8") as handle:
                applied, skipped, transitioned = replay(handle, synchronizer)
    except UnavailableError:
        logger.exception("Replay stopped on a retryable failure; rerun to resume")
        return 1

    logger.info(
        "Replay complete in %.1fs: %d applied, %d skipped, %d bindings transitioned",
        time.monotonic() - t0,
        applied,
        skipped,
        transitioned,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
