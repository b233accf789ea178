#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone

from portal.common.config import get_config
from portal.common.logging import init_structured_logging
from portal.persistence.firebase_client import get_firestore_client, require_firestore_emulator_or_allow_prod
from portal.revenue.firestore import load_pending_events, write_settlements
from portal.revenue.settlement import aggregate_settlements


def _parse_date(value: str) -> datetime:
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise argparse.ArgumentTypeError("Expected an ISO date/datetime (e.g. 2025-10-01)") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Aggregate pending attribution events into per-partner revenue settlements."
    )
    parser.add_argument("--start", required=True, type=_parse_date, help="Period start (inclusive), ISO format.")
    parser.add_argument("--end", required=True, type=_parse_date, help="Period end (inclusive), ISO format.")
    parser.add_argument(
        "--fee-pct",
        type=float,
        default=None,
        help="Platform fee percentage (0-100). Defaults to PLATFORM_FEE_PERCENTAGE.",
    )
    parser.add_argument("--created-by", default="settlement-cli", help="Recorded as created_by on settlements.")
    parser.add_argument("--write", action="store_true", help="Write settlements. Default is dry-run.")
    args = parser.parse_args()

    if args.end < args.start:
        parser.error("--end must not be before --start")

    init_structured_logging(service="settlement-cli")
    if args.write:
        require_firestore_emulator_or_allow_prod(caller="scripts/run_settlement.py")

    fee_pct = args.fee_pct if args.fee_pct is not None else get_config().platform_fee_percentage
    db = get_firestore_client()

    events = load_pending_events(period_start=args.start, period_end=args.end, db=db)
    settlements = aggregate_settlements(events, fee_pct, period_start=args.start, period_end=args.end)

    for s in settlements:
        printable = s.to_firestore()
        printable["period_start"] = args.start.isoformat()
        printable["period_end"] = args.end.isoformat()
        print(json.dumps(printable, default=str, sort_keys=True))

    print(f"Scanned {len(events)} pending events. {len(settlements)} partner settlements.")
    if not args.write:
        print("Dry-run: nothing written. Pass --write to persist.")
        return 0

    written = write_settlements(settlements, created_by=args.created_by, db=db)
    for s in written:
        print(f"Wrote settlement {s.id} for partner {s.partner_id} ({s.event_count} events)")
    print(f"Wrote {len(written)} settlements.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
