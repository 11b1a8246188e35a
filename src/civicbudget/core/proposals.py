"""Proposal registry — submission, vetting, and the votable candidate set.

The registry never counts votes. ``vote_count`` on a proposal row is a cache
written only by the vote ledger; every model returned here carries the
tally recounted from the ledger instead.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, assert_never

from civicbudget.core.cycles import load_cycle_row
from civicbudget.core.errors import (
    CycleNotInSubmissionPhase,
    InvalidProposalCost,
    InvalidStatusTransition,
    ProposalLocked,
    ProposalNotFound,
)
from civicbudget.core.phase import resolve_phase, server_now, voting_has_opened
from civicbudget.models.budget import (
    VOTABLE_STATUSES,
    BudgetProposal,
    Phase,
    ProposalDraft,
    ProposalStatus,
)

if TYPE_CHECKING:
    from civicbudget.db.models import BudgetProposalRow
    from civicbudget.db.repository import Repository

logger = logging.getLogger(__name__)

def allowed_transitions(status: ProposalStatus) -> frozenset[ProposalStatus]:
    """Statuses an administrator may move a proposal to from *status*.

    ``selected`` is never a target: only finalization funds proposals.
    """
    match status:
        case ProposalStatus.SUBMITTED:
            return frozenset(
                {
                    ProposalStatus.UNDER_REVIEW,
                    ProposalStatus.APPROVED_FOR_VOTING,
                    ProposalStatus.REJECTED,
                }
            )
        case ProposalStatus.UNDER_REVIEW:
            return frozenset({ProposalStatus.APPROVED_FOR_VOTING, ProposalStatus.REJECTED})
        case ProposalStatus.APPROVED_FOR_VOTING:
            return frozenset({ProposalStatus.UNDER_REVIEW, ProposalStatus.REJECTED})
        case ProposalStatus.SELECTED:
            return frozenset({ProposalStatus.IN_PROGRESS})
        case ProposalStatus.IN_PROGRESS:
            return frozenset({ProposalStatus.COMPLETED})
        case ProposalStatus.REJECTED | ProposalStatus.COMPLETED:
            return frozenset()
        case _:
            assert_never(status)


def is_delivery_status(status: ProposalStatus) -> bool:
    """True for statuses that track funded work after finalization."""
    match status:
        case ProposalStatus.SELECTED | ProposalStatus.IN_PROGRESS | ProposalStatus.COMPLETED:
            return True
        case (
            ProposalStatus.SUBMITTED
            | ProposalStatus.UNDER_REVIEW
            | ProposalStatus.APPROVED_FOR_VOTING
            | ProposalStatus.REJECTED
        ):
            return False
        case _:
            assert_never(status)


async def load_proposal_row(repo: Repository, proposal_id: str) -> BudgetProposalRow:
    row = await repo.get_proposal(proposal_id)
    if row is None:
        raise ProposalNotFound(proposal_id)
    return row


def with_ledger_count(row: BudgetProposalRow, votes: int) -> BudgetProposal:
    return BudgetProposal.model_validate(row).model_copy(update={"vote_count": votes})


async def get_proposal(repo: Repository, proposal_id: str) -> BudgetProposal:
    row = await load_proposal_row(repo, proposal_id)
    return with_ledger_count(row, await repo.count_votes_for_proposal(proposal_id))


async def list_proposals(
    repo: Repository,
    cycle_id: str,
    statuses: Collection[ProposalStatus] | None = None,
) -> list[BudgetProposal]:
    """List a cycle's proposals, most-voted first, optionally restricted to *statuses*."""
    await load_cycle_row(repo, cycle_id)
    rows = await repo.get_proposals_with_vote_counts(cycle_id, statuses)
    return [with_ledger_count(row, votes) for row, votes in rows]


async def list_votable(repo: Repository, cycle_id: str) -> list[BudgetProposal]:
    """Proposals citizens may vote for: those approved for voting."""
    return await list_proposals(repo, cycle_id, VOTABLE_STATUSES)


async def submit_proposal(
    repo: Repository,
    cycle_id: str,
    author_id: str,
    draft: ProposalDraft,
    now: datetime | None = None,
) -> BudgetProposal:
    """Record a citizen proposal during the submission phase.

    Raises:
        CycleNotFound: unknown cycle.
        CycleNotInSubmissionPhase: the submission window is not open.
        InvalidProposalCost: estimate outside the cycle's project cost bounds.
    """
    now = now or server_now()
    cycle = await load_cycle_row(repo, cycle_id)
    phase = resolve_phase(cycle, now)
    if phase != Phase.SUBMISSION:
        msg = f"Cycle {cycle_id} is not accepting proposals (phase: {phase})"
        raise CycleNotInSubmissionPhase(msg)

    cost = draft.estimated_cost
    if cost < cycle.min_project_cost:
        msg = f"Estimated cost {cost} is below the minimum project cost {cycle.min_project_cost}"
        raise InvalidProposalCost(msg)
    if cycle.max_project_cost is not None and cost > cycle.max_project_cost:
        msg = f"Estimated cost {cost} exceeds the maximum project cost {cycle.max_project_cost}"
        raise InvalidProposalCost(msg)

    row = await repo.create_proposal(
        cycle_id=cycle_id,
        author_id=author_id,
        title=draft.title,
        description=draft.description,
        estimated_cost=cost,
        category=draft.category,
        department=draft.department,
        ward=draft.ward,
        address_text=draft.address_text,
        created_at=now,
    )
    logger.info("proposal_submitted proposal=%s cycle=%s cost=%s", row.id, cycle_id, cost)
    return BudgetProposal.model_validate(row)


async def review_proposal(
    repo: Repository,
    proposal_id: str,
    status: ProposalStatus,
    admin_notes: str | None = None,
    technical_cost: Decimal | None = None,
    now: datetime | None = None,
) -> BudgetProposal:
    """Move a proposal through vetting or post-finalization delivery.

    Vetting moves (anything before ``selected``) are only legal until the
    voting window starts and while the cycle has no votes. Pausing a cycle
    does not reopen vetting: the lock reads the windows and the ledger, not
    ``is_active``. Delivery moves (``selected`` → ``in_progress`` →
    ``completed``) need a finalized cycle.
    """
    row = await load_proposal_row(repo, proposal_id)
    current = ProposalStatus(row.status)
    if status not in allowed_transitions(current):
        msg = f"Proposal {proposal_id} cannot move from {current} to {status}"
        raise InvalidStatusTransition(msg)

    cycle = await load_cycle_row(repo, row.cycle_id)
    if is_delivery_status(current):
        if cycle.finalized_at is None:
            msg = f"Cycle {cycle.id} is not finalized; delivery status cannot change yet"
            raise ProposalLocked(msg)
    elif (
        cycle.finalized_at is not None
        or voting_has_opened(cycle, now)
        or await repo.cycle_has_votes(cycle.id)
    ):
        msg = f"Vetting is closed for cycle {cycle.id}; voting has opened"
        raise ProposalLocked(msg)

    if technical_cost is not None:
        if technical_cost < 0:
            msg = "technical_cost must not be negative"
            raise InvalidProposalCost(msg)
        row.technical_cost = technical_cost
    if admin_notes is not None:
        row.admin_notes = admin_notes
    row.status = status
    await repo.session.flush()

    logger.info(
        "proposal_reviewed proposal=%s from=%s to=%s technical_cost=%s",
        proposal_id,
        current,
        status,
        row.technical_cost,
    )
    return with_ledger_count(row, await repo.count_votes_for_proposal(proposal_id))
