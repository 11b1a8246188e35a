"""Cycle API endpoints: administration, phase, analytics."""

from __future__ import annotations

from fastapi import APIRouter

from civicbudget.api.deps import RepoDep, SettingsDep
from civicbudget.core.analytics import cycle_analytics
from civicbudget.core.cycles import (
    create_cycle,
    get_cycle_phase,
    list_active_cycles,
    set_cycle_active,
    update_cycle,
)
from civicbudget.core.phase import resolve_phase
from civicbudget.models.budget import BudgetCycle, CycleDraft, CycleUpdate

router = APIRouter(prefix="/api/budget/cycles", tags=["cycles"])


def _cycle_payload(cycle: BudgetCycle) -> dict:
    """Serialize a cycle with its phase resolved against server time."""
    return {**cycle.model_dump(mode="json"), "phase": resolve_phase(cycle)}


@router.post("", status_code=201)
async def api_create_cycle(body: CycleDraft, repo: RepoDep, settings: SettingsDep) -> dict:
    """Create a new, inactive cycle."""
    cycle = await create_cycle(
        repo,
        body,
        default_max_votes_per_user=settings.civic_default_max_votes_per_user,
    )
    return {"data": _cycle_payload(cycle)}


@router.get("")
async def api_list_active_cycles(repo: RepoDep) -> dict:
    cycles = await list_active_cycles(repo)
    return {"data": [_cycle_payload(c) for c in cycles]}


@router.get("/{cycle_id}")
async def api_get_cycle(cycle_id: str, repo: RepoDep) -> dict:
    cycle, phase = await get_cycle_phase(repo, cycle_id)
    return {"data": {**cycle.model_dump(mode="json"), "phase": phase}}


@router.patch("/{cycle_id}")
async def api_update_cycle(cycle_id: str, body: CycleUpdate, repo: RepoDep) -> dict:
    """Edit a cycle's configuration. Rejected once the cycle is finalized."""
    cycle = await update_cycle(repo, cycle_id, body)
    return {"data": _cycle_payload(cycle)}


@router.post("/{cycle_id}/activate")
async def api_activate_cycle(cycle_id: str, repo: RepoDep) -> dict:
    cycle = await set_cycle_active(repo, cycle_id, active=True)
    return {"data": _cycle_payload(cycle)}


@router.post("/{cycle_id}/deactivate")
async def api_deactivate_cycle(cycle_id: str, repo: RepoDep) -> dict:
    cycle = await set_cycle_active(repo, cycle_id, active=False)
    return {"data": _cycle_payload(cycle)}


@router.get("/{cycle_id}/analytics")
async def api_cycle_analytics(cycle_id: str, repo: RepoDep) -> dict:
    analytics = await cycle_analytics(repo, cycle_id)
    return {"data": analytics.model_dump(mode="json")}
