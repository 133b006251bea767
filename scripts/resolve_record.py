#!/usr/bin/env python3
"""
Resolve a single source record against the master registry.

Usage:
    python scripts/resolve_record.py --name "Little Stars Daycare" --city Manchester --zip 03101 \
        --source-system ccis --source-id CCIS-001
    python scripts/resolve_record.py --name "Little Stars Daycare" --source-system ccis --create
    python scripts/resolve_record.py --name "Little Stars Daycare" --source-system ccis --dry-run
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from registry.database import SessionLocal, init_db
from registry.entity_resolution import (
    EntityResolver,
    MatchConfig,
    ResolveInput,
    ScorePolicy,
)


def main():
    parser = argparse.ArgumentParser(
        description="Resolve one provider record to a master entity"
    )
    parser.add_argument("--name", required=True, help="Provider or vendor name")
    parser.add_argument("--address", help="Street address")
    parser.add_argument("--city", help="City")
    parser.add_argument("--zip", help="ZIP code")
    parser.add_argument("--phone", help="Phone number")
    parser.add_argument("--source-system", required=True, help="Source system key (e.g. ccis)")
    parser.add_argument("--source-id", help="Identifier of the record in the source system")
    parser.add_argument(
        "--create",
        action="store_true",
        help="Create a master entity when no candidate resembles the record",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the best candidate without writing links, review rows or audit entries",
    )
    parser.add_argument(
        "--score-policy",
        choices=[p.value for p in ScorePolicy],
        help="Override the configured score policy",
    )

    args = parser.parse_args()

    config = MatchConfig.from_settings()
    if args.score_policy:
        config = replace(config, score_policy=ScorePolicy(args.score_policy))

    record = ResolveInput(
        name=args.name,
        address=args.address,
        city=args.city,
        zip=args.zip,
        phone=args.phone,
        source_system=args.source_system,
        source_identifier=args.source_id,
    )

    init_db()
    db = SessionLocal()

    try:
        resolver = EntityResolver(db)

        print("=" * 60)
        print("ENTITY RESOLUTION")
        print("=" * 60)
        print(f"Record: {record.name} ({record.source_system}:{record.source_identifier})")
        print(f"Mode:   {'DRY RUN' if args.dry_run else 'LIVE'}")
        print(f"Policy: {config.score_policy.value}")
        print("=" * 60)

        if args.dry_run:
            match = resolver.find_best_match(record, config)
            if match is None:
                print("\nNo candidate above the reject threshold.")
                return 0
            print(f"\nBest candidate: #{match.master_id} {match.display_name} (score={match.score:.3f})")
            for detail in match.match_details:
                print(
                    f"  {detail.criterion:<8} {detail.score:.3f} x {detail.weight:.2f}  "
                    f"'{detail.source_value}' vs '{detail.matched_value}'"
                )
            return 0

        if args.create:
            result, created = resolver.resolve_or_create(record, config)
            if created:
                print(f"\nCreated master entity #{result.master_id}")
        else:
            result = resolver.resolve(record, config)

        print(json.dumps(result.to_dict(), indent=2))
        return 0

    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
