#!/usr/bin/env python3
"""
Runs one notification pipeline batch from the command line (cron / manual ops).

Stages:
  events   - match inbox events against rules and schedule notifications
  deliver  - recover stuck rows, claim due notifications and send them

Usage:
  cd backend
  export DATABASE_URL="postgresql://..."   # or .env
  PYTHONPATH=. python scripts/run_notification_batch.py events --limit 100
  PYTHONPATH=. python scripts/run_notification_batch.py deliver --tenant-id <uuid>

Prints the batch stats as JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

# Run from repo root or backend; ensure backend is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from notifier.core import dependencies
from notifier.services.event_processor import process_events_once
from notifier.services.notification_dispatcher import run_notifications_once


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one notification pipeline batch.")
    parser.add_argument("stage", choices=["events", "deliver"], help="Which batch to run.")
    parser.add_argument("--limit", type=int, default=50, help="Maximum rows to take in this batch.")
    parser.add_argument("--tenant-id", default=None, help="Restrict the batch to one tenant.")
    parser.add_argument("--verbose", action="store_true", help="INFO logging instead of WARNING.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if dependencies.SessionLocal is None:
        print("Error: DATABASE_URL is not set.", file=sys.stderr)
        return 1

    limit = max(1, args.limit)
    with dependencies.session_scope() as db:
        if args.stage == "events":
            stats = process_events_once(db, limit=limit, tenant_id=args.tenant_id)
        else:
            stats = run_notifications_once(db, limit=limit, tenant_id=args.tenant_id)

    print(json.dumps(stats.model_dump(), sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
