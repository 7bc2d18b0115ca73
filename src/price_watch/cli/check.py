from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from typing import Optional, Sequence

from price_watch.config import Settings
from price_watch.errors import ConfigurationError, PersistenceFailure
from price_watch.repositories import PostgresRepository
from price_watch.services import Pipeline
from price_watch.utils.log import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="price-watch", description="Re-check prices of tracked listings")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and indexes")
    sub.add_parser("check", help="Check every active listing once (for cron/external schedulers)")
    p = sub.add_parser("recheck", help="Check a single listing now")
    p.add_argument("listing_id", type=int)
    p = sub.add_parser("health", help="Print the success rate over a trailing window")
    p.add_argument("--hours", type=float, default=24)
    p = sub.add_parser("stats", help="Print min/max/avg price of a listing")
    p.add_argument("listing_id", type=int)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    try:
        if args.command == "init-db":
            PostgresRepository(settings.db_url).init_schema()
            print("Schema ready")
            return 0

        pipeline = Pipeline.from_settings(settings)
        if args.command == "check":
            summary = pipeline.run_scheduled()
            print(json.dumps(summary.as_dict()))
            return 1 if summary.timed_out else 0
        if args.command == "recheck":
            result = pipeline.recheck(args.listing_id)
            if result is None:
                print(f"Listing {args.listing_id} not found", file=sys.stderr)
                return 2
            print(f"[{result.listing.status.value}] {result.message}")
            if result.latest:
                print(f"{result.latest.price:.2f} {result.latest.currency.value}")
            return 0
        if args.command == "health":
            print(pipeline.health.health(window_hours=args.hours).model_dump_json(indent=2))
            return 0
        if args.command == "stats":
            print(json.dumps(asdict(pipeline.history.stats(args.listing_id))))
            return 0
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 3
    except PersistenceFailure as e:
        print(f"Database error: {e}", file=sys.stderr)
        return 4
    return 0


if __name__ == "__main__":
    sys.exit(main())
