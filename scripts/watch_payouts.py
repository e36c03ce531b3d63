#!/usr/bin/env python3
"""Watch payout requests until each one settles.

Polls every payout id given on the command line with the same interval,
timeout and error caps the library uses, and prints each final status.

Usage
-----
Set environment variables and run::

    export COURIER_ACCESS_TOKEN="..."
    python scripts/watch_payouts.py PAYOUT_ID [PAYOUT_ID ...]

Options::

    --interval SECONDS   Seconds between polls (default: 10)
    --timeout SECONDS    Give up on a payout after this long (default: 300)
    --json               Print outcomes as JSON
    --verbose / -v       Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pycourier import CourierClient, CourierConfig, PayoutPoller, PayoutStatusResult  # noqa: E402


def _outcome_to_dict(key: str, state: str, result: PayoutStatusResult | None, attempts: int) -> dict[str, Any]:
    payload: dict[str, Any] = {"payout_id": key, "outcome": state, "attempts": attempts}
    if result is not None:
        payload["status"] = result.status.value
        payload["amount"] = result.amount
        payload["reference"] = result.reference
        payload["failure_reason"] = result.failure_reason
    return payload


async def main() -> int:
    parser = argparse.ArgumentParser(description="Poll payout requests until they complete or fail.")
    parser.add_argument("payout_ids", nargs="+", help="Payout ids to watch")
    parser.add_argument("--interval", type=float, help="Seconds between polls")
    parser.add_argument("--timeout", type=float, help="Seconds before a payout is given up on")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    overrides: dict[str, Any] = {}
    if args.interval is not None:
        overrides["payout_poll_interval"] = args.interval
    if args.timeout is not None:
        overrides["payout_poll_timeout"] = args.timeout
    config = CourierConfig.from_env(**overrides)

    def on_resolve(payout_id: str, result: PayoutStatusResult) -> None:
        if not args.json_mode:
            print(f"{payout_id}: {result.status.value}")

    async with CourierClient(config) as client:
        poller = PayoutPoller(client, config)
        poller.watch(args.payout_ids, on_resolve)
        outcomes = [await poller.outcome(payout_id) for payout_id in dict.fromkeys(args.payout_ids)]

    rows = [_outcome_to_dict(o.key, o.state.value, o.result, o.attempts) for o in outcomes]
    if args.json_mode:
        print(json.dumps(rows, indent=2, default=str, ensure_ascii=False))
    else:
        for row in rows:
            if row["outcome"] != "resolved":
                print(f"{row['payout_id']}: {row['outcome']} after {row['attempts']} poll(s)")

    return 0 if all(row["outcome"] == "resolved" for row in rows) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
