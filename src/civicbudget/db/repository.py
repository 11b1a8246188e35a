"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. Votes are append-only: there is no method
that updates or deletes a ledger row. The two compare-and-swap updates
(``try_consume_quota`` and ``claim_finalization``) are the only writes that
guard a shared counter; everything else is a plain insert or field update.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from civicbudget.db.models import (
    BudgetCycleRow,
    BudgetProposalRow,
    VoteRow,
    VoterQuotaRow,
)
from civicbudget.models.budget import ProposalCategory, ProposalStatus


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Cycles ---

    async def create_cycle(
        self,
        title: str,
        total_budget_amount: Decimal,
        max_votes_per_user: int,
        submission_start_at: datetime,
        submission_end_at: datetime,
        voting_start_at: datetime,
        voting_end_at: datetime,
        description: str = "",
        min_project_cost: Decimal = Decimal(0),
        max_project_cost: Decimal | None = None,
    ) -> BudgetCycleRow:
        row = BudgetCycleRow(
            title=title,
            description=description,
            total_budget_amount=total_budget_amount,
            min_project_cost=min_project_cost,
            max_project_cost=max_project_cost,
            max_votes_per_user=max_votes_per_user,
            submission_start_at=submission_start_at,
            submission_end_at=submission_end_at,
            voting_start_at=voting_start_at,
            voting_end_at=voting_end_at,
            is_active=False,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_cycle(self, cycle_id: str) -> BudgetCycleRow | None:
        return await self.session.get(BudgetCycleRow, cycle_id)

    async def get_all_cycles(self) -> list[BudgetCycleRow]:
        stmt = select(BudgetCycleRow).order_by(BudgetCycleRow.created_at.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_active_cycles(self) -> list[BudgetCycleRow]:
        """Return active cycles, most recently created first."""
        stmt = (
            select(BudgetCycleRow)
            .where(BudgetCycleRow.is_active.is_(True))
            .order_by(BudgetCycleRow.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def claim_finalization(
        self,
        cycle_id: str,
        finalized_at: datetime,
        concluding_message: str,
        allocation_snapshot: dict,
    ) -> bool:
        """Set ``finalized_at`` only if it is still unset.

        Returns True for exactly one caller per cycle. A concurrent caller's
        update matches zero rows once the winner commits.
        """
        stmt = (
            update(BudgetCycleRow)
            .where(
                BudgetCycleRow.id == cycle_id,
                BudgetCycleRow.finalized_at.is_(None),
            )
            .values(
                finalized_at=finalized_at,
                concluding_message=concluding_message,
                allocation_snapshot=allocation_snapshot,
                is_active=False,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def refresh(self, row: object) -> None:
        """Reload *row* from the database, discarding identity-map state."""
        await self.session.refresh(row)

    # --- Proposals ---

    async def create_proposal(
        self,
        cycle_id: str,
        author_id: str,
        title: str,
        description: str,
        estimated_cost: Decimal,
        category: ProposalCategory = ProposalCategory.OTHER,
        department: str | None = None,
        ward: str | None = None,
        address_text: str | None = None,
        status: ProposalStatus = ProposalStatus.SUBMITTED,
        created_at: datetime | None = None,
    ) -> BudgetProposalRow:
        row = BudgetProposalRow(
            cycle_id=cycle_id,
            author_id=author_id,
            title=title,
            description=description,
            estimated_cost=estimated_cost,
            category=category,
            department=department,
            ward=ward,
            address_text=address_text,
            status=status,
            vote_count=0,
        )
        if created_at is not None:
            row.created_at = created_at
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_proposal(self, proposal_id: str) -> BudgetProposalRow | None:
        return await self.session.get(BudgetProposalRow, proposal_id)

    async def get_proposals_for_cycle(
        self,
        cycle_id: str,
        statuses: Collection[ProposalStatus] | None = None,
    ) -> list[BudgetProposalRow]:
        """Return a cycle's proposals in submission order, optionally filtered by status."""
        stmt = select(BudgetProposalRow).where(BudgetProposalRow.cycle_id == cycle_id)
        if statuses:
            stmt = stmt.where(BudgetProposalRow.status.in_(list(statuses)))
        stmt = stmt.order_by(BudgetProposalRow.created_at.asc(), BudgetProposalRow.id.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_proposals_with_vote_counts(
        self,
        cycle_id: str,
        statuses: Collection[ProposalStatus] | None = None,
    ) -> list[tuple[BudgetProposalRow, int]]:
        """Return (proposal, ledger vote count) pairs, most-voted first.

        Rows and counts come from one SELECT, so the pairs are a single
        point-in-time snapshot of the ledger. The cached ``vote_count``
        column is not read.
        """
        counts = (
            select(VoteRow.proposal_id, func.count(VoteRow.id).label("votes"))
            .where(VoteRow.cycle_id == cycle_id)
            .group_by(VoteRow.proposal_id)
            .subquery()
        )
        votes = func.coalesce(counts.c.votes, 0)
        stmt = (
            select(BudgetProposalRow, votes)
            .outerjoin(counts, counts.c.proposal_id == BudgetProposalRow.id)
            .where(BudgetProposalRow.cycle_id == cycle_id)
        )
        if statuses:
            stmt = stmt.where(BudgetProposalRow.status.in_(list(statuses)))
        stmt = stmt.order_by(votes.desc(), BudgetProposalRow.created_at.asc())
        result = await self.session.execute(stmt)
        return [(row, count) for row, count in result.all()]

    async def increment_vote_count(self, proposal_id: str) -> None:
        """Advance the cached counter in SQL so concurrent increments never collide."""
        stmt = (
            update(BudgetProposalRow)
            .where(BudgetProposalRow.id == proposal_id)
            .values(vote_count=BudgetProposalRow.vote_count + 1)
        )
        await self.session.execute(stmt)

    # --- Vote ledger ---

    async def has_vote(self, cycle_id: str, voter_id: str, proposal_id: str) -> bool:
        stmt = select(VoteRow.id).where(
            VoteRow.cycle_id == cycle_id,
            VoteRow.voter_id == voter_id,
            VoteRow.proposal_id == proposal_id,
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def append_vote(
        self,
        cycle_id: str,
        voter_id: str,
        proposal_id: str,
        voted_at: datetime,
    ) -> VoteRow:
        """Insert a ledger row. Raises IntegrityError if the triple already exists."""
        row = VoteRow(
            cycle_id=cycle_id,
            voter_id=voter_id,
            proposal_id=proposal_id,
            voted_at=voted_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def ensure_quota_row(self, cycle_id: str, voter_id: str) -> None:
        """Create the voter's quota counter at zero unless it already exists."""
        stmt = (
            sqlite_insert(VoterQuotaRow)
            .values(cycle_id=cycle_id, voter_id=voter_id, votes_used=0)
            .on_conflict_do_nothing(index_elements=["cycle_id", "voter_id"])
        )
        await self.session.execute(stmt)

    async def try_consume_quota(self, cycle_id: str, voter_id: str, limit: int) -> bool:
        """Atomically take one quota slot if fewer than *limit* are used.

        The bound is checked in the UPDATE's WHERE clause, so the check and
        the increment are a single statement: of two racing callers for the
        last slot, only one sees an affected row.
        """
        stmt = (
            update(VoterQuotaRow)
            .where(
                VoterQuotaRow.cycle_id == cycle_id,
                VoterQuotaRow.voter_id == voter_id,
                VoterQuotaRow.votes_used < limit,
            )
            .values(votes_used=VoterQuotaRow.votes_used + 1)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_votes_used(self, cycle_id: str, voter_id: str) -> int:
        """Count the voter's ledger rows in a cycle."""
        stmt = select(func.count(VoteRow.id)).where(
            VoteRow.cycle_id == cycle_id,
            VoteRow.voter_id == voter_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def get_voter_proposal_ids(self, cycle_id: str, voter_id: str) -> list[str]:
        """Return the proposals a voter backed in a cycle, in voting order."""
        stmt = (
            select(VoteRow.proposal_id)
            .where(VoteRow.cycle_id == cycle_id, VoteRow.voter_id == voter_id)
            .order_by(VoteRow.voted_at.asc(), VoteRow.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_votes_for_proposal(self, proposal_id: str) -> int:
        stmt = select(func.count(VoteRow.id)).where(VoteRow.proposal_id == proposal_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def cycle_has_votes(self, cycle_id: str) -> bool:
        stmt = select(VoteRow.id).where(VoteRow.cycle_id == cycle_id).limit(1)
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def count_unique_voters(self, cycle_id: str) -> int:
        stmt = select(func.count(func.distinct(VoteRow.voter_id))).where(
            VoteRow.cycle_id == cycle_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()
