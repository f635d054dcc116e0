"""
Ledger reconciliation script.

Backfills missing ledger entries from applied documents, recomputes running
balances and resyncs every balance cache from its ledger.
Safe to run repeatedly and alongside live traffic.

Usage:
    python -m ledger_backend.reconcile_ledgers
    python -m ledger_backend.reconcile_ledgers --recompute-only
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ledger_backend.app.core.observability import configure_logging
from ledger_backend.app.domain.ledger.bindings import STOCK_LEDGER, VENDOR_LEDGER
from ledger_backend.app.services import reconciliation
from ledger_backend.app.services.ledger_engine import LedgerEngine


async def recompute_only(engine: LedgerEngine) -> int:
    """Rewrite running balances without touching entries or caches."""
    async with engine.read_session() as db:
        targets = [
            (binding, entity_id)
            for binding in (STOCK_LEDGER, VENDOR_LEDGER)
            for entity_id in await reconciliation.entity_ids(db, binding)
        ]

    rewritten = 0
    for binding, entity_id in targets:
        rewritten += await engine.recompute(binding.entity_type, entity_id)
    return rewritten


async def reconcile_ledgers(recompute: bool = False) -> int:
    configure_logging()
    engine = LedgerEngine()

    if recompute:
        print("🔁 Recomputing running balances...")
        rewritten = await recompute_only(engine)
        print(f"✅ Rewrote {rewritten} running balance(s)")
        return 0

    print("🔁 Starting ledger reconciliation...")
    report = await engine.reconcile_all()

    print(f"✅ Backfilled entries:          {report.backfilled_entries}")
    print(f"✅ Entities recomputed:         {report.recomputed_entities}")
    print(f"✅ Running balances rewritten:  {report.rewritten_running_balances}")
    print(f"✅ Balance caches corrected:    {report.corrected_balances}")

    if report.failures:
        print(f"\n⚠️  {len(report.failures)} unit(s) failed and were sent to the dead letter queue:")
        for failure in report.failures:
            target = (
                f"document {failure.document_id}" if failure.document_id is not None
                else f"{failure.entity_type.value} {failure.entity_id}"
            )
            print(f"  - {failure.task} [{target}]: {failure.error}")
        return 1

    print("\n🎉 Reconciliation completed successfully!")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile ledgers with their balance caches.")
    parser.add_argument(
        "--recompute-only",
        action="store_true",
        help="Only rewrite running balances; skip backfill and cache resync",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(reconcile_ledgers(recompute=args.recompute_only)))


if __name__ == "__main__":
    main()
