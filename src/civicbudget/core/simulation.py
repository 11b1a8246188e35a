"""What-if allocation runs against a hypothetical budget.

Simulation loads a snapshot of the candidate proposals with tallies
recounted from the vote ledger, hands it to the allocation engine, and
returns the result. It never writes, so it is safe to run at any time,
concurrently, and as often as needed.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from civicbudget.core.allocation import allocate
from civicbudget.core.cycles import load_cycle_row
from civicbudget.core.errors import InvalidBudgetOverride
from civicbudget.core.proposals import with_ledger_count
from civicbudget.models.budget import (
    HISTORICAL_STATUSES,
    VOTABLE_STATUSES,
    AllocationResult,
    BudgetProposal,
    ProposalStatus,
)

if TYPE_CHECKING:
    from civicbudget.db.models import BudgetCycleRow
    from civicbudget.db.repository import Repository

logger = logging.getLogger(__name__)


def candidate_statuses(cycle: BudgetCycleRow) -> frozenset[ProposalStatus]:
    """Statuses that were candidates when the cycle's allocation was (or will be) made."""
    if cycle.finalized_at is not None:
        return HISTORICAL_STATUSES
    return VOTABLE_STATUSES


async def load_candidates(
    repo: Repository,
    cycle: BudgetCycleRow,
    statuses: frozenset[ProposalStatus],
) -> list[BudgetProposal]:
    """Snapshot candidate proposals with ``vote_count`` recounted from the ledger.

    Rows and tallies are read in one statement. The returned models are
    detached copies, so the caller can allocate without touching the
    session again.
    """
    rows = await repo.get_proposals_with_vote_counts(cycle.id, statuses)
    return [with_ledger_count(row, votes) for row, votes in rows]


async def simulate(
    repo: Repository,
    cycle_id: str,
    hypothetical_budget: Decimal | None = None,
) -> AllocationResult:
    """Run the allocation for *cycle_id* at *hypothetical_budget*.

    Defaults to the cycle's real budget. For a finalized cycle the candidate
    set includes proposals finalization already selected, so re-running at the
    real budget reproduces the committed winner set.

    Raises:
        CycleNotFound: unknown cycle.
        InvalidBudgetOverride: negative budget.
    """
    if hypothetical_budget is not None and hypothetical_budget < 0:
        msg = f"Budget override must not be negative (got {hypothetical_budget})"
        raise InvalidBudgetOverride(msg)

    cycle = await load_cycle_row(repo, cycle_id)
    budget = cycle.total_budget_amount if hypothetical_budget is None else hypothetical_budget
    statuses = candidate_statuses(cycle)
    candidates = await load_candidates(repo, cycle, statuses)
    result = allocate(candidates, Decimal(budget), eligible=statuses)
    logger.debug(
        "simulation cycle=%s budget=%s winners=%d utilization=%.2f",
        cycle_id,
        budget,
        len(result.selected),
        result.utilization_rate,
    )
    return result
