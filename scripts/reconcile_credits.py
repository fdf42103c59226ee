#!/usr/bin/env python3
"""Nightly purchase reconciliation script.

Finds transactions that were recorded but never credited (no matching
``credit_grants`` row) and reports them.  With ``--redrive`` each one is
granted through the settlement service, which applies every grant at most
once even while webhooks are still arriving.

Usage:
    DATABASE_URL=postgresql+asyncpg://... python scripts/reconcile_credits.py [--redrive]

Exit codes:
    0 -- nothing left uncredited
    1 -- one or more transactions remain uncredited
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timezone

import structlog

from imaginify.database import connection_manager
from imaginify.services.payment_service import redrive_uncredited
from imaginify.services.transaction_service import find_uncredited_transactions


async def reconcile(redrive: bool) -> dict:
    """Run the reconciliation and return the report dict."""
    factory = await connection_manager.sessionmaker()
    try:
        async with factory() as db:
            redriven = []
            if redrive:
                outcomes = await redrive_uncredited(db)
                redriven = [outcome.payment_id for outcome in outcomes]

            pending = await find_uncredited_transactions(db)
            await db.commit()
    finally:
        await connection_manager.dispose()

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "redriven": redriven,
        "total_uncredited": len(pending),
        "uncredited": [
            {
                "payment_id": txn.payment_id,
                "buyer_id": str(txn.buyer_id),
                "credits": txn.credits,
                "recorded_at": txn.created_at.isoformat(),
            }
            for txn in pending
        ],
    }


async def main(argv: list[str]) -> int:
    # stdout carries the JSON report only.
    structlog.configure(
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )
    report = await reconcile(redrive="--redrive" in argv)

    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")

    return 1 if report["total_uncredited"] else 0


if __name__ == "__main__":
    exit_code = asyncio.run(main(sys.argv[1:]))
    sys.exit(exit_code)
