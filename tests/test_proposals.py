"""Tests for proposal submission, vetting, and listing."""

from decimal import Decimal

import pytest

from civicbudget.core.cycles import set_cycle_active
from civicbudget.core.errors import (
    CycleNotInSubmissionPhase,
    InvalidProposalCost,
    InvalidStatusTransition,
    ProposalLocked,
    ProposalNotFound,
)
from civicbudget.core.ledger import cast_vote
from civicbudget.core.proposals import (
    allowed_transitions,
    get_proposal,
    is_delivery_status,
    list_proposals,
    list_votable,
    review_proposal,
    submit_proposal,
)
from civicbudget.models.budget import ProposalCategory, ProposalDraft, ProposalStatus


def _draft(cost: str = "250", **overrides) -> ProposalDraft:
    fields = {
        "title": "Streetlights on Mill Road",
        "description": "Twelve LED poles",
        "category": ProposalCategory.HEALTH_SAFETY,
        "ward": "ward-3",
        "estimated_cost": Decimal(cost),
    }
    fields.update(overrides)
    return ProposalDraft(**fields)


class TestSubmit:
    async def test_submission_phase_accepts(self, repo, now, make_cycle):
        cycle = await make_cycle(repo, "submission")
        proposal = await submit_proposal(repo, cycle.id, "citizen-1", _draft(), now=now)
        assert proposal.status == ProposalStatus.SUBMITTED
        assert proposal.vote_count == 0
        assert proposal.author_id == "citizen-1"
        assert proposal.ward == "ward-3"
        assert proposal.created_at == now

    @pytest.mark.parametrize("phase", ["draft", "vetting", "voting", "closed"])
    async def test_other_phases_reject(self, repo, now, make_cycle, phase):
        cycle = await make_cycle(repo, phase)
        with pytest.raises(CycleNotInSubmissionPhase):
            await submit_proposal(repo, cycle.id, "citizen-1", _draft(), now=now)

    async def test_below_minimum_cost(self, repo, now, make_cycle):
        cycle = await make_cycle(repo, "submission", min_cost="500")
        with pytest.raises(InvalidProposalCost):
            await submit_proposal(repo, cycle.id, "citizen-1", _draft("499"), now=now)

    async def test_above_maximum_cost(self, repo, now, make_cycle):
        cycle = await make_cycle(repo, "submission", max_cost="1000")
        with pytest.raises(InvalidProposalCost):
            await submit_proposal(repo, cycle.id, "citizen-1", _draft("1000.01"), now=now)

    async def test_bounds_are_inclusive(self, repo, now, make_cycle):
        cycle = await make_cycle(repo, "submission", min_cost="100", max_cost="1000")
        low = await submit_proposal(repo, cycle.id, "c", _draft("100"), now=now)
        high = await submit_proposal(repo, cycle.id, "c", _draft("1000"), now=now)
        assert low.estimated_cost == Decimal("100")
        assert high.estimated_cost == Decimal("1000")

    def test_draft_requires_positive_cost(self):
        with pytest.raises(ValueError):
            _draft("0")


class TestTransitions:
    def test_selected_is_never_an_admin_target(self):
        for status in ProposalStatus:
            assert ProposalStatus.SELECTED not in allowed_transitions(status)

    def test_terminal_statuses(self):
        assert allowed_transitions(ProposalStatus.REJECTED) == frozenset()
        assert allowed_transitions(ProposalStatus.COMPLETED) == frozenset()

    def test_delivery_statuses(self):
        delivery = {s for s in ProposalStatus if is_delivery_status(s)}
        assert delivery == {
            ProposalStatus.SELECTED,
            ProposalStatus.IN_PROGRESS,
            ProposalStatus.COMPLETED,
        }


class TestReview:
    async def test_approve_with_technical_cost(self, repo, now, make_cycle, make_proposal):
        cycle = await make_cycle(repo, "vetting")
        proposal = await make_proposal(repo, cycle.id, status=ProposalStatus.SUBMITTED)

        reviewed = await review_proposal(
            repo,
            proposal.id,
            ProposalStatus.APPROVED_FOR_VOTING,
            admin_notes="Costed by public works",
            technical_cost=Decimal("180"),
            now=now,
        )

        assert reviewed.status == ProposalStatus.APPROVED_FOR_VOTING
        assert reviewed.technical_cost == Decimal("180")
        assert reviewed.admin_notes == "Costed by public works"
        assert reviewed.allocation_cost == Decimal("180")

    async def test_illegal_transition(self, repo, now, make_cycle, make_proposal):
        cycle = await make_cycle(repo, "vetting")
        proposal = await make_proposal(repo, cycle.id, status=ProposalStatus.REJECTED)
        with pytest.raises(InvalidStatusTransition):
            await review_proposal(
                repo, proposal.id, ProposalStatus.APPROVED_FOR_VOTING, now=now
            )

    async def test_cannot_select_by_hand(self, repo, now, make_cycle, make_proposal):
        cycle = await make_cycle(repo, "vetting")
        proposal = await make_proposal(repo, cycle.id)
        with pytest.raises(InvalidStatusTransition):
            await review_proposal(repo, proposal.id, ProposalStatus.SELECTED, now=now)

    @pytest.mark.parametrize("phase", ["voting", "closed"])
    async def test_vetting_locked_once_voting_opens(
        self, repo, now, make_cycle, make_proposal, phase
    ):
        cycle = await make_cycle(repo, phase)
        proposal = await make_proposal(repo, cycle.id)
        with pytest.raises(ProposalLocked):
            await review_proposal(repo, proposal.id, ProposalStatus.REJECTED, now=now)
        assert (await get_proposal(repo, proposal.id)).status == (
            ProposalStatus.APPROVED_FOR_VOTING
        )

    async def test_pausing_during_voting_keeps_vetting_closed(
        self, repo, now, make_cycle, make_proposal
    ):
        cycle = await make_cycle(repo, "voting")
        proposal = await make_proposal(repo, cycle.id)
        await cast_vote(repo, cycle.id, "v-1", proposal.id, now=now)

        await set_cycle_active(repo, cycle.id, False)
        with pytest.raises(ProposalLocked):
            await review_proposal(repo, proposal.id, ProposalStatus.REJECTED, now=now)
        await set_cycle_active(repo, cycle.id, True)

        kept = await get_proposal(repo, proposal.id)
        assert kept.status == ProposalStatus.APPROVED_FOR_VOTING
        assert kept.vote_count == 1

    async def test_votes_close_vetting_even_before_the_window(
        self, repo, now, make_cycle, make_proposal
    ):
        cycle = await make_cycle(repo, "vetting")
        proposal = await make_proposal(repo, cycle.id)
        await repo.append_vote(cycle.id, "v-1", proposal.id, voted_at=now)
        with pytest.raises(ProposalLocked):
            await review_proposal(repo, proposal.id, ProposalStatus.UNDER_REVIEW, now=now)

    async def test_delivery_requires_finalized_cycle(
        self, repo, now, make_cycle, make_proposal
    ):
        cycle = await make_cycle(repo, "closed")
        proposal = await make_proposal(repo, cycle.id, status=ProposalStatus.SELECTED)
        with pytest.raises(ProposalLocked):
            await review_proposal(repo, proposal.id, ProposalStatus.IN_PROGRESS, now=now)

        cycle.finalized_at = now
        await repo.session.flush()
        started = await review_proposal(repo, proposal.id, ProposalStatus.IN_PROGRESS, now=now)
        assert started.status == ProposalStatus.IN_PROGRESS
        done = await review_proposal(repo, proposal.id, ProposalStatus.COMPLETED, now=now)
        assert done.status == ProposalStatus.COMPLETED

    async def test_negative_technical_cost(self, repo, now, make_cycle, make_proposal):
        cycle = await make_cycle(repo, "vetting")
        proposal = await make_proposal(repo, cycle.id, status=ProposalStatus.SUBMITTED)
        with pytest.raises(InvalidProposalCost):
            await review_proposal(
                repo,
                proposal.id,
                ProposalStatus.UNDER_REVIEW,
                technical_cost=Decimal("-1"),
                now=now,
            )

    async def test_unknown_proposal(self, repo, now):
        with pytest.raises(ProposalNotFound):
            await review_proposal(repo, "missing", ProposalStatus.REJECTED, now=now)


class TestListing:
    async def test_votable_excludes_unapproved(self, repo, make_cycle, make_proposal):
        cycle = await make_cycle(repo, "voting")
        approved = await make_proposal(repo, cycle.id)
        await make_proposal(repo, cycle.id, status=ProposalStatus.SUBMITTED)
        await make_proposal(repo, cycle.id, status=ProposalStatus.REJECTED)

        votable = await list_votable(repo, cycle.id)

        assert [p.id for p in votable] == [approved.id]

    async def test_status_filter(self, repo, make_cycle, make_proposal):
        cycle = await make_cycle(repo, "vetting")
        await make_proposal(repo, cycle.id, status=ProposalStatus.SUBMITTED)
        await make_proposal(repo, cycle.id, status=ProposalStatus.UNDER_REVIEW)
        await make_proposal(repo, cycle.id, status=ProposalStatus.REJECTED)

        pending = await list_proposals(
            repo, cycle.id, [ProposalStatus.SUBMITTED, ProposalStatus.UNDER_REVIEW]
        )
        everything = await list_proposals(repo, cycle.id)

        assert {p.status for p in pending} == {
            ProposalStatus.SUBMITTED,
            ProposalStatus.UNDER_REVIEW,
        }
        assert len(everything) == 3

    async def test_read_models_count_from_the_ledger(self, repo, now, make_cycle, make_proposal):
        cycle = await make_cycle(repo, "voting")
        backed = await make_proposal(repo, cycle.id, title="Backed")
        drifted = await make_proposal(repo, cycle.id, title="Drifted")
        await cast_vote(repo, cycle.id, "v-1", backed.id, now=now)
        drifted.vote_count = 7
        await repo.session.flush()

        votable = await list_votable(repo, cycle.id)

        assert [(p.id, p.vote_count) for p in votable] == [(backed.id, 1), (drifted.id, 0)]
        assert (await get_proposal(repo, drifted.id)).vote_count == 0
        assert (await get_proposal(repo, backed.id)).vote_count == 1
