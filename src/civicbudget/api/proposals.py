"""Proposal API endpoints — submission, vetting, votable listing, tallies."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from civicbudget.api.deps import RepoDep
from civicbudget.core.ledger import tally
from civicbudget.core.proposals import (
    get_proposal,
    list_proposals,
    list_votable,
    review_proposal,
    submit_proposal,
)
from civicbudget.models.budget import ProposalDraft, ProposalStatus

router = APIRouter(prefix="/api/budget", tags=["proposals"])


class SubmitProposalRequest(ProposalDraft):
    """A citizen's proposal plus the identity of its author."""

    author_id: str = Field(min_length=1)


class ReviewRequest(BaseModel):
    """An administrator's vetting or delivery decision."""

    status: ProposalStatus
    admin_notes: str | None = None
    technical_cost: Decimal | None = None


@router.post("/cycles/{cycle_id}/proposals", status_code=201)
async def api_submit_proposal(cycle_id: str, body: SubmitProposalRequest, repo: RepoDep) -> dict:
    """Submit a proposal. Only accepted while the submission window is open."""
    draft = ProposalDraft.model_validate(body.model_dump(exclude={"author_id"}))
    proposal = await submit_proposal(repo, cycle_id, body.author_id, draft)
    return {"data": proposal.model_dump(mode="json")}


@router.get("/cycles/{cycle_id}/proposals")
async def api_list_proposals(
    cycle_id: str,
    repo: RepoDep,
    status: Annotated[list[ProposalStatus] | None, Query()] = None,
) -> dict:
    """List a cycle's proposals, optionally filtered by one or more statuses."""
    proposals = await list_proposals(repo, cycle_id, status or None)
    return {"data": [p.model_dump(mode="json") for p in proposals]}


@router.get("/cycles/{cycle_id}/proposals/votable")
async def api_list_votable(cycle_id: str, repo: RepoDep) -> dict:
    proposals = await list_votable(repo, cycle_id)
    return {"data": [p.model_dump(mode="json") for p in proposals]}


@router.get("/proposals/{proposal_id}")
async def api_get_proposal(proposal_id: str, repo: RepoDep) -> dict:
    proposal = await get_proposal(repo, proposal_id)
    return {"data": proposal.model_dump(mode="json")}


@router.post("/proposals/{proposal_id}/review")
async def api_review_proposal(proposal_id: str, body: ReviewRequest, repo: RepoDep) -> dict:
    proposal = await review_proposal(
        repo,
        proposal_id,
        body.status,
        admin_notes=body.admin_notes,
        technical_cost=body.technical_cost,
    )
    return {"data": proposal.model_dump(mode="json")}


@router.get("/proposals/{proposal_id}/tally")
async def api_proposal_tally(proposal_id: str, repo: RepoDep) -> dict:
    """Vote count for a proposal, read from the ledger."""
    votes = await tally(repo, proposal_id)
    return {"data": {"proposal_id": proposal_id, "votes": votes}}
