"""Tests for the database layer: schema, constraints, and atomic updates."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from civicbudget.db.engine import create_session_factory, get_session
from civicbudget.db.repository import Repository
from civicbudget.models.budget import ProposalStatus


class TestTableCreation:
    async def test_all_tables_created(self, engine: AsyncEngine):
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert set(tables) >= {"budget_cycles", "budget_proposals", "budget_votes", "voter_quotas"}

    def test_session_factory_is_cached_per_engine(self, engine: AsyncEngine):
        assert create_session_factory(engine) is create_session_factory(engine)


class TestCycleRows:
    async def test_money_round_trips_as_decimal(self, engine, make_cycle):
        async with get_session(engine) as session:
            cycle = await make_cycle(Repository(session), budget="1234567.89")
            cycle_id = cycle.id
        async with get_session(engine) as session:
            row = await Repository(session).get_cycle(cycle_id)
            assert row.total_budget_amount == Decimal("1234567.89")

    async def test_claim_finalization_succeeds_once(self, repo, now, make_cycle):
        cycle = await make_cycle(repo, "closed")
        snapshot = {"selected": [], "budget": "1000"}

        first = await repo.claim_finalization(cycle.id, now, "done", snapshot)
        second = await repo.claim_finalization(
            cycle.id, now + timedelta(hours=1), "again", snapshot
        )
        await repo.refresh(cycle)

        assert first is True
        assert second is False
        assert cycle.concluding_message == "done"
        assert cycle.is_active is False


class TestVoteRows:
    async def test_duplicate_triple_violates_unique_index(
        self, engine, now, make_cycle, make_proposal
    ):
        async with get_session(engine) as session:
            repo = Repository(session)
            cycle = await make_cycle(repo)
            proposal = await make_proposal(repo, cycle.id)
            await repo.append_vote(cycle.id, "v-1", proposal.id, voted_at=now)
            ids = (cycle.id, proposal.id)

        with pytest.raises(IntegrityError):
            async with get_session(engine) as session:
                await Repository(session).append_vote(ids[0], "v-1", ids[1], voted_at=now)

        async with get_session(engine) as session:
            assert await Repository(session).count_votes_for_proposal(ids[1]) == 1

    async def test_vote_counts_joined_from_the_ledger(self, repo, now, make_cycle, make_proposal):
        cycle = await make_cycle(repo)
        a = await make_proposal(repo, cycle.id, title="a")
        b = await make_proposal(repo, cycle.id, title="b")
        unvoted = await make_proposal(repo, cycle.id, title="c")
        await repo.append_vote(cycle.id, "v-1", a.id, voted_at=now)
        await repo.append_vote(cycle.id, "v-2", a.id, voted_at=now)
        await repo.append_vote(cycle.id, "v-2", b.id, voted_at=now)
        unvoted.vote_count = 9
        await repo.session.flush()

        pairs = await repo.get_proposals_with_vote_counts(cycle.id)

        assert [(row.id, votes) for row, votes in pairs] == [(a.id, 2), (b.id, 1), (unvoted.id, 0)]
        assert await repo.cycle_has_votes(cycle.id)
        assert await repo.count_unique_voters(cycle.id) == 2
        assert await repo.get_votes_used(cycle.id, "v-2") == 2


class TestQuotaRows:
    async def test_consume_stops_at_limit(self, repo, make_cycle):
        cycle = await make_cycle(repo)
        await repo.ensure_quota_row(cycle.id, "v-1")
        await repo.ensure_quota_row(cycle.id, "v-1")

        taken = [await repo.try_consume_quota(cycle.id, "v-1", limit=2) for _ in range(3)]

        assert taken == [True, True, False]

    async def test_increment_vote_count_is_visible(self, repo, make_cycle, make_proposal):
        cycle = await make_cycle(repo)
        proposal = await make_proposal(repo, cycle.id)
        await repo.increment_vote_count(proposal.id)
        await repo.increment_vote_count(proposal.id)
        assert (await repo.get_proposal(proposal.id)).vote_count == 2

    async def test_status_filter_query(self, repo, make_cycle, make_proposal):
        cycle = await make_cycle(repo)
        await make_proposal(repo, cycle.id, status=ProposalStatus.REJECTED)
        kept = await make_proposal(repo, cycle.id)
        rows = await repo.get_proposals_for_cycle(
            cycle.id, [ProposalStatus.APPROVED_FOR_VOTING]
        )
        assert [r.id for r in rows] == [kept.id]

    async def test_all_cycles_includes_inactive(self, repo, make_cycle):
        await make_cycle(repo, active=False)
        await make_cycle(repo, active=True)
        assert len(await repo.get_all_cycles()) == 2
        assert len(await repo.get_active_cycles()) == 1
