"""Winner selection — turn vote tallies into a budget-respecting winner set.

Pure computation, no I/O. The policy is rank-respecting greedy selection,
not value-optimal knapsack packing: a proposal with more votes is never
displaced by a lower-voted one just to fill the budget more tightly.

Ordering is total and reproducible:

1. ``vote_count`` descending
2. allocation cost ascending (cheaper wins among equally popular proposals)
3. ``created_at`` ascending (first submitted wins remaining ties)
4. ``id`` ascending (final tiebreak so the order never depends on input order)

The ordered list is scanned once. A proposal is funded if its cost fits in
what is left; otherwise it is skipped and the scan continues, so a later,
cheaper proposal can still be funded.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from decimal import ROUND_HALF_UP, Decimal

from civicbudget.models.budget import (
    VOTABLE_STATUSES,
    AllocationResult,
    BudgetProposal,
    ProposalStatus,
)

_RATE_QUANTUM = Decimal("0.01")


def rank_key(proposal: BudgetProposal) -> tuple:
    """Sort key implementing the ranking order above."""
    return (
        -proposal.vote_count,
        proposal.allocation_cost,
        proposal.created_at,
        proposal.id,
    )


def rank_proposals(
    proposals: Iterable[BudgetProposal],
    eligible: Collection[ProposalStatus] = VOTABLE_STATUSES,
) -> list[BudgetProposal]:
    """Filter to eligible statuses and return them in ranking order."""
    return sorted((p for p in proposals if p.status in eligible), key=rank_key)


def utilization_rate(total_cost: Decimal, budget: Decimal) -> float:
    """Funded cost as a percentage of the budget, rounded to two places."""
    if budget <= 0:
        return 0.0
    rate = (total_cost / budget * 100).quantize(_RATE_QUANTUM, rounding=ROUND_HALF_UP)
    return float(rate)


def allocate(
    proposals: Iterable[BudgetProposal],
    budget: Decimal,
    *,
    eligible: Collection[ProposalStatus] = VOTABLE_STATUSES,
) -> AllocationResult:
    """Select winners for *budget* from *proposals*.

    Args:
        proposals: Candidates with their current ``vote_count``.
        budget: Money available. Zero or negative funds nothing.
        eligible: Statuses considered candidates. Defaults to proposals
            approved for voting; historical re-runs widen it to include
            proposals finalization has since moved on.

    Returns:
        The winner set in ranking order plus cost and utilization metrics.
    """
    budget = Decimal(budget)
    ranked = rank_proposals(proposals, eligible)

    if budget <= 0:
        return AllocationResult(
            selected=[],
            budget=budget,
            total_cost=Decimal(0),
            remaining_budget=budget,
            utilization_rate=0.0,
            considered_count=len(ranked),
        )

    selected: list[BudgetProposal] = []
    remaining = budget
    for proposal in ranked:
        cost = proposal.allocation_cost
        if cost <= remaining:
            selected.append(proposal)
            remaining -= cost

    total_cost = budget - remaining
    return AllocationResult(
        selected=selected,
        budget=budget,
        total_cost=total_cost,
        remaining_budget=remaining,
        utilization_rate=utilization_rate(total_cost, budget),
        considered_count=len(ranked),
    )
