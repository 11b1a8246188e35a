"""Seed a budget cycle and walk it through voting for demo purposes.

Usage:
    python scripts/demo_seed.py seed              # Create an open cycle + approved proposals
    python scripts/demo_seed.py vote [N]          # Cast votes from N random citizens (default 20)
    python scripts/demo_seed.py simulate [BUDGET] # Preview winners (default: cycle budget)
    python scripts/demo_seed.py close             # End voting now
    python scripts/demo_seed.py finalize TEXT     # Commit winners with a closing message
    python scripts/demo_seed.py status            # Print current state

Uses a local SQLite database (demo_civicbudget.db).
"""

from __future__ import annotations

import asyncio
import os
import random
import sys
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from civicbudget.core.analytics import cycle_analytics
from civicbudget.core.cycles import create_cycle, get_cycle_phase, set_cycle_active, update_cycle
from civicbudget.core.errors import BudgetError
from civicbudget.core.finalization import finalize
from civicbudget.core.ledger import cast_vote
from civicbudget.core.proposals import list_proposals, list_votable
from civicbudget.core.simulation import simulate
from civicbudget.db.engine import create_engine, create_tables, get_session
from civicbudget.db.repository import Repository
from civicbudget.models.budget import CycleDraft, CycleUpdate, ProposalCategory, ProposalStatus

DEMO_DB = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///demo_civicbudget.db")

# (title, category, ward, department, estimated cost)
PROPOSALS = [
    (
        "Resurface Market Street",
        ProposalCategory.ROAD_INFRASTRUCTURE,
        "ward-1",
        "public_works",
        420_000,
    ),
    ("Riverside play area", ProposalCategory.PARKS_ENVIRONMENT, "ward-2", "parks", 180_000),
    ("Clinic solar backup", ProposalCategory.HEALTH_SAFETY, None, "health", 260_000),
    ("Borehole for Kibera East", ProposalCategory.WATER_SANITATION, "ward-3", "water", 310_000),
    ("Library reading room", ProposalCategory.EDUCATION_CULTURE, "ward-1", None, 95_000),
    ("Community seed bank", ProposalCategory.AGRICULTURE, "ward-4", "agriculture", 60_000),
    ("Street lighting, Hill Rd", ProposalCategory.HEALTH_SAFETY, "ward-2", "public_works", 140_000),
]


async def _latest_cycle_id(repo: Repository) -> str | None:
    cycles = await repo.get_active_cycles()
    return cycles[0].id if cycles else None


async def seed():
    """Create a cycle whose voting window is open now, with approved proposals."""
    engine = create_engine(DEMO_DB)
    await create_tables(engine)

    now = datetime.now(UTC)
    async with get_session(engine) as session:
        repo = Repository(session)
        cycle = await create_cycle(
            repo,
            CycleDraft(
                title="Neighbourhood Fund 2026",
                description="Capital projects chosen by residents",
                total_budget_amount=Decimal(1_000_000),
                max_project_cost=Decimal(500_000),
                max_votes_per_user=3,
                submission_start_at=now - timedelta(days=14),
                submission_end_at=now - timedelta(days=7),
                voting_start_at=now - timedelta(days=1),
                voting_end_at=now + timedelta(days=6),
            ),
        )
        await set_cycle_active(repo, cycle.id, active=True)
        for i, (title, category, ward, department, cost) in enumerate(PROPOSALS):
            await repo.create_proposal(
                cycle_id=cycle.id,
                author_id=f"citizen-{i}",
                title=title,
                description=f"{title}, proposed by residents",
                estimated_cost=Decimal(cost),
                category=category,
                ward=ward,
                department=department,
                status=ProposalStatus.APPROVED_FOR_VOTING,
                created_at=now - timedelta(days=10, minutes=i),
            )

    print(f"Cycle seeded: {len(PROPOSALS)} proposals")
    print(f"Cycle ID: {cycle.id}")
    await engine.dispose()


async def vote(voters: int = 20):
    """Each citizen votes for up to their quota of random proposals."""
    engine = create_engine(DEMO_DB)
    rng = random.Random()
    cast = rejected = 0
    async with get_session(engine) as session:
        repo = Repository(session)
        cycle_id = await _latest_cycle_id(repo)
        if not cycle_id:
            print("No active cycle found. Run 'seed' first.")
            return
        proposals = await list_votable(repo, cycle_id)

    for n in range(voters):
        picks = rng.sample(proposals, k=min(len(proposals), rng.randint(1, 4)))
        for proposal in picks:
            try:
                async with get_session(engine) as session:
                    await cast_vote(Repository(session), cycle_id, f"voter-{n}", proposal.id)
                cast += 1
            except BudgetError as exc:
                rejected += 1
                print(f"  voter-{n}: {exc.code}")

    print(f"Votes cast: {cast}, rejected: {rejected}")
    await engine.dispose()


async def preview(budget: str | None = None):
    """Print the winner set a budget would fund."""
    engine = create_engine(DEMO_DB)
    async with get_session(engine) as session:
        repo = Repository(session)
        cycle_id = await _latest_cycle_id(repo)
        if not cycle_id:
            print("No active cycle found. Run 'seed' first.")
            return
        result = await simulate(repo, cycle_id, Decimal(budget) if budget else None)

    print(
        f"Budget {result.budget}: {len(result.selected)} winners, "
        f"{result.utilization_rate}% used"
    )
    for p in result.selected:
        print(f"  {p.vote_count:>3} votes  {p.allocation_cost:>12}  {p.title}")
    await engine.dispose()


async def close():
    """Move the voting deadline to now so the cycle can be finalized."""
    engine = create_engine(DEMO_DB)
    async with get_session(engine) as session:
        repo = Repository(session)
        cycle_id = await _latest_cycle_id(repo)
        if not cycle_id:
            print("No active cycle found. Run 'seed' first.")
            return
        await update_cycle(
            repo, cycle_id, CycleUpdate(voting_end_at=datetime.now(UTC) - timedelta(seconds=1))
        )
        _, phase = await get_cycle_phase(repo, cycle_id)
    print(f"Voting closed. Phase: {phase}")
    await engine.dispose()


async def commit_winners(message: str):
    engine = create_engine(DEMO_DB)
    async with get_session(engine) as session:
        repo = Repository(session)
        cycle_id = await _latest_cycle_id(repo)
        if not cycle_id:
            print("No active cycle found. Run 'seed' and 'close' first.")
            return
        result = await finalize(repo, cycle_id, message)

    print(f"Finalized: {len(result.selected)} proposals selected, {result.total_cost} committed")
    await engine.dispose()


async def status():
    """Print every cycle's phase, tallies, and participation."""
    engine = create_engine(DEMO_DB)
    async with get_session(engine) as session:
        repo = Repository(session)
        from sqlalchemy import select

        from civicbudget.db.models import BudgetCycleRow

        result = await session.execute(select(BudgetCycleRow))
        for row in result.scalars().all():
            cycle, phase = await get_cycle_phase(repo, row.id)
            print(f"{cycle.title} [{phase}] budget={cycle.total_budget_amount}")
            for p in await list_proposals(repo, cycle.id):
                print(f"  {p.vote_count:>3}  {p.status:<20} {p.title}")
            analytics = await cycle_analytics(repo, cycle.id)
            print(f"  {analytics.total_votes} votes from {analytics.unique_voters} citizens")

    await engine.dispose()


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return

    cmd = sys.argv[1]
    if cmd == "seed":
        asyncio.run(seed())
    elif cmd == "vote":
        n = int(sys.argv[2]) if len(sys.argv) > 2 else 20
        asyncio.run(vote(n))
    elif cmd == "simulate":
        asyncio.run(preview(sys.argv[2] if len(sys.argv) > 2 else None))
    elif cmd == "close":
        asyncio.run(close())
    elif cmd == "finalize":
        if len(sys.argv) < 3:
            print("Usage: demo_seed.py finalize 'closing message'")
            return
        asyncio.run(commit_winners(" ".join(sys.argv[2:])))
    elif cmd == "status":
        asyncio.run(status())
    else:
        print(f"Unknown command: {cmd}")
        print(__doc__)


if __name__ == "__main__":
    main()
