"""Rebuild cached proposal vote counts from the vote ledger.

Each proposal row carries a ``vote_count`` that the ledger bumps on every
accepted vote. Tallies are always read from the ledger itself, but listings
sort by the cached value, so drift (from manual SQL edits or restored
backups) is worth repairing.

Safe to run multiple times (idempotent — consistent counters are left alone).

Usage:
    # Dry run (default — shows what would change, changes nothing):
    python scripts/reconcile_vote_counts.py

    # Apply changes:
    python scripts/reconcile_vote_counts.py --apply
"""

from __future__ import annotations

import asyncio
import os
import sys

from civicbudget.core.ledger import reconcile_vote_counts
from civicbudget.db.engine import create_engine, get_session
from civicbudget.db.repository import Repository


async def main(apply: bool = False) -> None:
    """Find and repair drifted vote counters in every cycle."""
    db_url = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///civicbudget.db")
    engine = create_engine(db_url)

    async with get_session(engine) as session:
        repo = Repository(session)

        cycles = await repo.get_all_cycles()
        if not cycles:
            print("No cycles found.")
            return

        total_drifted = 0
        for cycle in cycles:
            corrected = await reconcile_vote_counts(repo, cycle.id)
            if not corrected:
                continue
            total_drifted += len(corrected)
            print(f"\nCycle: {cycle.title} ({cycle.id})")
            for proposal_id, count in corrected.items():
                print(f"  - [{proposal_id[:8]}] ledger count={count}")

        if not apply:
            await session.rollback()

        print(f"\n{'=' * 50}")
        print(f"Total drifted counters: {total_drifted}")
        if not apply:
            print("DRY RUN — no changes made. Pass --apply to repair.")

    await engine.dispose()


if __name__ == "__main__":
    apply = "--apply" in sys.argv
    asyncio.run(main(apply=apply))
