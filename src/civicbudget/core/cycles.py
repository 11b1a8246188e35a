"""Cycle administration — create, edit, activate, and read budget cycles.

A cycle is created inactive. Once ``finalized_at`` is set it is immutable:
every mutating call here raises ``CycleLocked``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from civicbudget.config import DEFAULT_MAX_VOTES_PER_USER
from civicbudget.core.errors import CycleLocked, CycleNotFound, InvalidCycleConfiguration
from civicbudget.core.phase import resolve_phase, server_now
from civicbudget.models.budget import BudgetCycle, CycleDraft, CycleUpdate, Phase, as_utc

if TYPE_CHECKING:
    from civicbudget.db.models import BudgetCycleRow
    from civicbudget.db.repository import Repository

logger = logging.getLogger(__name__)


async def load_cycle_row(repo: Repository, cycle_id: str) -> BudgetCycleRow:
    """Fetch a cycle row or raise CycleNotFound."""
    row = await repo.get_cycle(cycle_id)
    if row is None:
        raise CycleNotFound(cycle_id)
    return row


def _ensure_unlocked(row: BudgetCycleRow) -> None:
    if row.finalized_at is not None:
        msg = f"Cycle {row.id} is finalized and can no longer be changed"
        raise CycleLocked(msg)


async def create_cycle(
    repo: Repository,
    draft: CycleDraft,
    default_max_votes_per_user: int = DEFAULT_MAX_VOTES_PER_USER,
) -> BudgetCycle:
    """Create an inactive cycle from validated administrator input."""
    row = await repo.create_cycle(
        title=draft.title,
        description=draft.description,
        total_budget_amount=draft.total_budget_amount,
        min_project_cost=draft.min_project_cost,
        max_project_cost=draft.max_project_cost,
        max_votes_per_user=draft.max_votes_per_user or default_max_votes_per_user,
        submission_start_at=draft.submission_start_at,
        submission_end_at=draft.submission_end_at,
        voting_start_at=draft.voting_start_at,
        voting_end_at=draft.voting_end_at,
    )
    logger.info(
        "cycle_created cycle=%s budget=%s quota=%d",
        row.id,
        row.total_budget_amount,
        row.max_votes_per_user,
    )
    return BudgetCycle.model_validate(row)


async def get_cycle(repo: Repository, cycle_id: str) -> BudgetCycle:
    return BudgetCycle.model_validate(await load_cycle_row(repo, cycle_id))


async def get_cycle_phase(
    repo: Repository, cycle_id: str, now: datetime | None = None
) -> tuple[BudgetCycle, Phase]:
    """Return a cycle together with its phase at *now* (server time by default)."""
    cycle = await get_cycle(repo, cycle_id)
    return cycle, resolve_phase(cycle, now)


async def list_active_cycles(repo: Repository) -> list[BudgetCycle]:
    return [BudgetCycle.model_validate(row) for row in await repo.get_active_cycles()]


async def update_cycle(
    repo: Repository,
    cycle_id: str,
    changes: CycleUpdate,
    now: datetime | None = None,
) -> BudgetCycle:
    """Apply a partial edit, re-validating the merged configuration.

    The merged values go through ``CycleDraft`` so window ordering and cost
    bounds are checked exactly as they are at creation. Once the cycle has
    votes, ``voting_start_at`` may not move past *now*: that would reopen
    vetting under ballots already cast.
    """
    row = await load_cycle_row(repo, cycle_id)
    _ensure_unlocked(row)

    # max_project_cost is the only field an explicit null may clear.
    updates = {
        field: value
        for field, value in changes.model_dump(exclude_unset=True).items()
        if value is not None or field == "max_project_cost"
    }
    merged = {
        "title": row.title,
        "description": row.description,
        "total_budget_amount": row.total_budget_amount,
        "min_project_cost": row.min_project_cost,
        "max_project_cost": row.max_project_cost,
        "max_votes_per_user": row.max_votes_per_user,
        "submission_start_at": row.submission_start_at,
        "submission_end_at": row.submission_end_at,
        "voting_start_at": row.voting_start_at,
        "voting_end_at": row.voting_end_at,
    }
    merged.update(updates)
    try:
        validated = CycleDraft.model_validate(merged)
    except ValidationError as exc:
        raise InvalidCycleConfiguration(str(exc)) from exc

    at = as_utc(now) if now is not None else server_now()
    if (
        "voting_start_at" in updates
        and as_utc(validated.voting_start_at) > at
        and await repo.cycle_has_votes(row.id)
    ):
        msg = f"Cycle {row.id} already has votes; voting cannot be moved back to the future"
        raise CycleLocked(msg)

    for field in updates:
        setattr(row, field, getattr(validated, field))
    await repo.session.flush()
    logger.info("cycle_updated cycle=%s fields=%s", row.id, ",".join(sorted(updates)))
    return BudgetCycle.model_validate(row)


async def set_cycle_active(repo: Repository, cycle_id: str, active: bool) -> BudgetCycle:
    """Flip the administrative kill-switch."""
    row = await load_cycle_row(repo, cycle_id)
    _ensure_unlocked(row)
    row.is_active = active
    await repo.session.flush()
    logger.info("cycle_%s cycle=%s", "activated" if active else "deactivated", row.id)
    return BudgetCycle.model_validate(row)
