"""Vote ledger — append-only votes, per-citizen quota, and tallies.

The ledger is the only writer of votes, of ``voter_quotas.votes_used`` and of
the cached ``vote_count`` on proposals. Tallies are always read back from the
vote rows; the cached counter is a projection that ``reconcile_vote_counts``
can rebuild at any time.

Concurrency: ``cast_vote`` is the one concurrency-critical path in the
engine. The quota check and the quota increment happen in a single
conditional UPDATE (see ``Repository.try_consume_quota``), so two requests
from the same voter racing for the last slot cannot both commit. The unique
index on ``(cycle_id, voter_id, proposal_id)`` independently rejects a racing
duplicate. Every rejection raises, and the caller's session rolls the whole
transaction back, including any quota slot taken before the failure.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from civicbudget.core.cycles import load_cycle_row
from civicbudget.core.errors import (
    CycleNotInVotingPhase,
    DuplicateVote,
    ProposalNotFound,
    ProposalNotVotable,
    QuotaExceeded,
)
from civicbudget.core.phase import resolve_phase, server_now
from civicbudget.core.proposals import load_proposal_row
from civicbudget.models.budget import Phase, ProposalStatus, VoteReceipt

if TYPE_CHECKING:
    from civicbudget.db.repository import Repository

logger = logging.getLogger(__name__)


async def cast_vote(
    repo: Repository,
    cycle_id: str,
    voter_id: str,
    proposal_id: str,
    now: datetime | None = None,
) -> VoteReceipt:
    """Record *voter_id*'s vote for *proposal_id* in *cycle_id*.

    Preconditions, checked in order inside the caller's transaction:

    1. the cycle and proposal exist, and the proposal belongs to the cycle
    2. the cycle is in its voting phase (server time)
    3. the proposal is approved for voting
    4. the voter has not already voted for this proposal
    5. the voter has quota left

    Raises:
        CycleNotFound, ProposalNotFound, CycleNotInVotingPhase,
        ProposalNotVotable, DuplicateVote, QuotaExceeded.
    """
    now = now or server_now()
    cycle = await load_cycle_row(repo, cycle_id)
    proposal = await load_proposal_row(repo, proposal_id)
    if proposal.cycle_id != cycle_id:
        raise ProposalNotFound(proposal_id)

    phase = resolve_phase(cycle, now)
    if phase != Phase.VOTING:
        logger.info("vote_rejected reason=phase cycle=%s phase=%s", cycle_id, phase)
        msg = f"Cycle {cycle_id} is not open for voting (phase: {phase})"
        raise CycleNotInVotingPhase(msg)

    if proposal.status != ProposalStatus.APPROVED_FOR_VOTING:
        logger.info(
            "vote_rejected reason=status proposal=%s status=%s", proposal_id, proposal.status
        )
        msg = f"Proposal {proposal_id} is not open for voting (status: {proposal.status})"
        raise ProposalNotVotable(msg)

    if await repo.has_vote(cycle_id, voter_id, proposal_id):
        logger.info("vote_rejected reason=duplicate cycle=%s voter=%s", cycle_id, voter_id)
        msg = f"Voter already voted for proposal {proposal_id}"
        raise DuplicateVote(msg)

    # Concurrency-critical section: claim a quota slot atomically, then append.
    await repo.ensure_quota_row(cycle_id, voter_id)
    if not await repo.try_consume_quota(cycle_id, voter_id, cycle.max_votes_per_user):
        logger.info("vote_rejected reason=quota cycle=%s voter=%s", cycle_id, voter_id)
        msg = f"Voter has used all {cycle.max_votes_per_user} votes in cycle {cycle_id}"
        raise QuotaExceeded(msg)

    try:
        vote = await repo.append_vote(cycle_id, voter_id, proposal_id, voted_at=now)
    except IntegrityError as exc:
        logger.info("vote_rejected reason=duplicate_race cycle=%s voter=%s", cycle_id, voter_id)
        msg = f"Voter already voted for proposal {proposal_id}"
        raise DuplicateVote(msg) from exc
    await repo.increment_vote_count(proposal_id)

    used = await repo.get_votes_used(cycle_id, voter_id)
    remaining = max(cycle.max_votes_per_user - used, 0)
    logger.info(
        "vote_cast vote=%s cycle=%s proposal=%s voter=%s remaining=%d",
        vote.id,
        cycle_id,
        proposal_id,
        voter_id,
        remaining,
    )
    return VoteReceipt(vote_id=vote.id, proposal_id=proposal_id, remaining_votes=remaining)


async def tally(repo: Repository, proposal_id: str) -> int:
    """Vote count for a proposal, counted from the ledger."""
    await load_proposal_row(repo, proposal_id)
    return await repo.count_votes_for_proposal(proposal_id)


async def voter_quota_remaining(repo: Repository, cycle_id: str, voter_id: str) -> int:
    """Votes the voter may still cast in the cycle."""
    cycle = await load_cycle_row(repo, cycle_id)
    used = await repo.get_votes_used(cycle_id, voter_id)
    return max(cycle.max_votes_per_user - used, 0)


async def voter_votes(repo: Repository, cycle_id: str, voter_id: str) -> list[str]:
    """Proposal ids the voter has backed in the cycle."""
    await load_cycle_row(repo, cycle_id)
    return await repo.get_voter_proposal_ids(cycle_id, voter_id)


async def reconcile_vote_counts(repo: Repository, cycle_id: str) -> dict[str, int]:
    """Rewrite each proposal's cached ``vote_count`` from the ledger.

    Returns ``{proposal_id: corrected_count}`` for the proposals whose cached
    value had drifted. An empty dict means the projection was consistent.
    """
    await load_cycle_row(repo, cycle_id)
    corrected: dict[str, int] = {}
    for row, actual in await repo.get_proposals_with_vote_counts(cycle_id):
        if row.vote_count != actual:
            logger.warning(
                "vote_count_drift proposal=%s cached=%d ledger=%d", row.id, row.vote_count, actual
            )
            row.vote_count = actual
            corrected[row.id] = actual
    if corrected:
        await repo.session.flush()
    logger.info("vote_counts_reconciled cycle=%s corrected=%d", cycle_id, len(corrected))
    return corrected
