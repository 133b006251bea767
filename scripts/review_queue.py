#!/usr/bin/env python3
"""
Work the manual review queue of tentative matches.

Usage:
    python scripts/review_queue.py list
    python scripts/review_queue.py approve 12 --reviewer jdoe
    python scripts/review_queue.py reject 12 --reviewer jdoe
    python scripts/review_queue.py unlink ccis CCIS-001 --reviewer jdoe
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from registry.database import SessionLocal, init_db
from registry.entity_resolution import ResolutionStore


def list_pending(store: ResolutionStore, limit: int):
    pending = store.list_pending_matches(limit=limit)
    if not pending:
        print("Review queue is empty.")
        return

    print(f"{'ID':>5}  {'SCORE':>5}  {'SOURCE':<28}  CANDIDATE")
    print("-" * 80)
    for row in pending:
        source = f"{row.source_system}:{row.source_identifier}"
        candidate = row.candidate.display_name if row.candidate else "?"
        print(
            f"{row.id:>5}  {row.match_score or 0:>5.2f}  {source:<28}  "
            f"#{row.candidate_master_id} {candidate}"
        )
        print(f"{'':>14}{row.source_name} | {row.source_city or ''} {row.source_zip or ''}")


def main():
    parser = argparse.ArgumentParser(description="Manual review of pending matches")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="Show pending matches")
    list_parser.add_argument("--limit", type=int, default=50)

    for command in ("approve", "reject"):
        sub = subparsers.add_parser(command, help=f"{command.title()} a pending match")
        sub.add_argument("pending_id", type=int)
        sub.add_argument("--reviewer", required=True)

    unlink_parser = subparsers.add_parser("unlink", help="Remove an active source link")
    unlink_parser.add_argument("source_system")
    unlink_parser.add_argument("source_identifier")
    unlink_parser.add_argument("--reviewer")

    args = parser.parse_args()

    init_db()
    db = SessionLocal()

    try:
        store = ResolutionStore(db)

        if args.command == "list":
            list_pending(store, args.limit)
            return 0

        if args.command == "approve":
            ok = store.approve_pending_match(args.pending_id, args.reviewer)
        elif args.command == "reject":
            ok = store.reject_pending_match(args.pending_id, args.reviewer)
        else:
            ok = store.unlink_source(args.source_system, args.source_identifier, args.reviewer)

        print("Done." if ok else "Nothing changed (see log).")
        return 0 if ok else 1

    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
