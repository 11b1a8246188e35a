"""Phase resolution — where a cycle sits in its lifecycle at a given instant.

The phase is never stored. It is recomputed from the cycle's configured
windows and the server's wall clock on every call, so there is no timer or
background job that advances cycles.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol

from civicbudget.models.budget import Phase, as_utc


class PhasedCycle(Protocol):
    """Anything carrying the fields phase resolution reads (ORM row or model)."""

    is_active: bool
    finalized_at: datetime | None
    submission_start_at: datetime
    submission_end_at: datetime
    voting_start_at: datetime
    voting_end_at: datetime


def server_now() -> datetime:
    """The only clock the engine trusts."""
    return datetime.now(UTC)


def resolve_phase(cycle: PhasedCycle, now: datetime | None = None) -> Phase:
    """Map a cycle's windows and *now* to its current phase.

    Rules are evaluated in order; the first match wins. Window bounds are
    inclusive for submission and voting, exclusive for vetting.
    """
    if cycle.finalized_at is not None:
        return Phase.FINALIZED
    if not cycle.is_active:
        return Phase.DRAFT

    at = as_utc(now) if now is not None else server_now()
    submission_start = as_utc(cycle.submission_start_at)
    submission_end = as_utc(cycle.submission_end_at)
    voting_start = as_utc(cycle.voting_start_at)
    voting_end = as_utc(cycle.voting_end_at)

    if at < submission_start:
        return Phase.DRAFT
    if submission_start <= at <= submission_end:
        return Phase.SUBMISSION
    if submission_end < at < voting_start:
        return Phase.VETTING
    if voting_start <= at <= voting_end:
        return Phase.VOTING
    return Phase.CLOSED


def voting_has_opened(cycle: PhasedCycle, now: datetime | None = None) -> bool:
    """True once the voting window has started, whatever the kill-switch says."""
    at = as_utc(now) if now is not None else server_now()
    return at >= as_utc(cycle.voting_start_at)
