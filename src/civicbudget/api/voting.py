"""Voting and results API endpoints — ballots, quota, simulation, finalization."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter
from pydantic import BaseModel, Field

from civicbudget.api.deps import RepoDep
from civicbudget.core.finalization import finalize
from civicbudget.core.ledger import cast_vote, voter_quota_remaining, voter_votes
from civicbudget.core.simulation import simulate

router = APIRouter(prefix="/api/budget/cycles", tags=["voting"])


class CastVoteRequest(BaseModel):
    voter_id: str = Field(min_length=1)
    proposal_id: str = Field(min_length=1)


class SimulateRequest(BaseModel):
    """Optional hypothetical budget; omitted means the cycle's real budget."""

    budget: Decimal | None = None


class FinalizeRequest(BaseModel):
    concluding_message: str = ""


@router.post("/{cycle_id}/votes", status_code=201)
async def api_cast_vote(cycle_id: str, body: CastVoteRequest, repo: RepoDep) -> dict:
    """Cast one vote. Quota and duplicate checks are enforced atomically."""
    receipt = await cast_vote(repo, cycle_id, body.voter_id, body.proposal_id)
    # Commit before responding so an accepted ballot is durable when the client sees it.
    await repo.session.commit()
    return {"data": receipt.model_dump(mode="json")}


@router.get("/{cycle_id}/voters/{voter_id}")
async def api_voter_status(cycle_id: str, voter_id: str, repo: RepoDep) -> dict:
    """Proposals the voter has backed and the votes they have left."""
    proposal_ids = await voter_votes(repo, cycle_id, voter_id)
    remaining = await voter_quota_remaining(repo, cycle_id, voter_id)
    return {
        "data": {
            "cycle_id": cycle_id,
            "voter_id": voter_id,
            "proposal_ids": proposal_ids,
            "remaining_votes": remaining,
        }
    }


@router.post("/{cycle_id}/simulate")
async def api_simulate(cycle_id: str, repo: RepoDep, body: SimulateRequest | None = None) -> dict:
    """Preview the winner set. Never writes."""
    budget = body.budget if body is not None else None
    result = await simulate(repo, cycle_id, budget)
    return {"data": result.model_dump(mode="json")}


@router.post("/{cycle_id}/finalize")
async def api_finalize(cycle_id: str, body: FinalizeRequest, repo: RepoDep) -> dict:
    """Commit the winner set. Repeat calls answer 409 with the committed result."""
    result = await finalize(repo, cycle_id, body.concluding_message)
    await repo.session.commit()
    return {"data": result.model_dump(mode="json")}
