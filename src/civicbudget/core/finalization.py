"""Finalization — commit a cycle's winner set exactly once.

This is the only code that moves proposals to ``selected`` and sets a
cycle's ``finalized_at``. The claim on the cycle is a conditional update on
``finalized_at IS NULL``: of any number of concurrent callers, one claims it
and the rest get ``AlreadyFinalized`` carrying the committed result.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from civicbudget.core.allocation import allocate
from civicbudget.core.cycles import load_cycle_row
from civicbudget.core.errors import AlreadyFinalized, CycleNotClosed
from civicbudget.core.phase import resolve_phase, server_now
from civicbudget.core.simulation import load_candidates
from civicbudget.models.budget import (
    VOTABLE_STATUSES,
    AllocationResult,
    Phase,
    ProposalStatus,
)

if TYPE_CHECKING:
    from civicbudget.db.models import BudgetCycleRow
    from civicbudget.db.repository import Repository

logger = logging.getLogger(__name__)


def persisted_result(cycle: BudgetCycleRow) -> AllocationResult | None:
    """Rebuild the allocation a finalized cycle committed, from its snapshot."""
    if cycle.allocation_snapshot is None:
        return None
    return AllocationResult.model_validate(cycle.allocation_snapshot)


async def finalize(
    repo: Repository,
    cycle_id: str,
    concluding_message: str,
    now: datetime | None = None,
) -> AllocationResult:
    """Allocate the cycle's real budget and persist the winners.

    Raises:
        CycleNotFound: unknown cycle.
        AlreadyFinalized: the cycle was finalized before or concurrently;
            ``exc.result`` is the committed allocation.
        CycleNotClosed: voting has not ended (or the cycle is inactive).
    """
    now = now or server_now()
    cycle = await load_cycle_row(repo, cycle_id)
    if cycle.finalized_at is not None:
        raise AlreadyFinalized(cycle_id, persisted_result(cycle))

    phase = resolve_phase(cycle, now)
    if phase != Phase.CLOSED:
        msg = f"Cycle {cycle_id} cannot be finalized before voting closes (phase: {phase})"
        raise CycleNotClosed(msg)

    candidates = await load_candidates(repo, cycle, VOTABLE_STATUSES)
    result = allocate(candidates, cycle.total_budget_amount)

    claimed = await repo.claim_finalization(
        cycle_id,
        finalized_at=now,
        concluding_message=concluding_message,
        allocation_snapshot=result.model_dump(mode="json"),
    )
    await repo.refresh(cycle)
    if not claimed:
        logger.info("finalize_conflict cycle=%s", cycle_id)
        raise AlreadyFinalized(cycle_id, persisted_result(cycle))

    for winner in result.selected:
        row = await repo.get_proposal(winner.id)
        if row is not None and row.status == ProposalStatus.APPROVED_FOR_VOTING:
            row.status = ProposalStatus.SELECTED
    await repo.session.flush()

    logger.info(
        "cycle_finalized cycle=%s winners=%d total_cost=%s utilization=%.2f",
        cycle_id,
        len(result.selected),
        result.total_cost,
        result.utilization_rate,
    )
    return result
