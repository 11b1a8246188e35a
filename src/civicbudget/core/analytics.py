"""Participation analytics for a cycle, counted from the vote ledger."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from civicbudget.core.cycles import load_cycle_row
from civicbudget.models.budget import CycleAnalytics

if TYPE_CHECKING:
    from civicbudget.db.repository import Repository

# Bucket for proposals not tied to a ward or department.
CITY_WIDE = "city_wide"
UNASSIGNED = "unassigned"


async def cycle_analytics(repo: Repository, cycle_id: str) -> CycleAnalytics:
    """Break a cycle's votes down by category, ward, and department."""
    await load_cycle_row(repo, cycle_id)
    proposals = await repo.get_proposals_with_vote_counts(cycle_id)

    by_category: Counter[str] = Counter()
    by_ward: Counter[str] = Counter()
    by_department: Counter[str] = Counter()
    for proposal, votes in proposals:
        by_category[str(proposal.category)] += votes
        by_ward[proposal.ward or CITY_WIDE] += votes
        by_department[proposal.department or UNASSIGNED] += votes

    return CycleAnalytics(
        cycle_id=cycle_id,
        total_votes=sum(votes for _, votes in proposals),
        total_proposals=len(proposals),
        unique_voters=await repo.count_unique_voters(cycle_id),
        votes_by_category=dict(by_category),
        votes_by_ward=dict(by_ward),
        votes_by_department=dict(by_department),
    )
