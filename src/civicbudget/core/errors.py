"""Typed failures raised by the cycle engine.

Every expected failure is a subclass of ``BudgetError`` carrying a stable
``code`` (the class name) and the HTTP status the API layer maps it to.
Raising any of these inside a session rolls the transaction back, so a
rejected vote or finalize never leaves partial state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from civicbudget.models.budget import AllocationResult


class BudgetError(Exception):
    """Base class for all engine outcomes that are reported to the caller."""

    status_code: ClassVar[int] = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    @property
    def code(self) -> str:
        return type(self).__name__


# --- Not found ---


class ProposalOrCycleNotFound(BudgetError):
    status_code = 404


class CycleNotFound(ProposalOrCycleNotFound):
    def __init__(self, cycle_id: str) -> None:
        super().__init__(f"Cycle {cycle_id} not found")
        self.cycle_id = cycle_id


class ProposalNotFound(ProposalOrCycleNotFound):
    def __init__(self, proposal_id: str) -> None:
        super().__init__(f"Proposal {proposal_id} not found")
        self.proposal_id = proposal_id


# --- Validation ---


class CycleNotInVotingPhase(BudgetError):
    status_code = 409


class CycleNotInSubmissionPhase(BudgetError):
    status_code = 409


class ProposalNotVotable(BudgetError):
    status_code = 409


class DuplicateVote(BudgetError):
    status_code = 409


class QuotaExceeded(BudgetError):
    status_code = 409


class InvalidStatusTransition(BudgetError):
    status_code = 409


class InvalidBudgetOverride(BudgetError):
    status_code = 422


class InvalidProposalCost(BudgetError):
    status_code = 422


class InvalidCycleConfiguration(BudgetError):
    status_code = 422


# --- State conflicts ---


class CycleNotClosed(BudgetError):
    status_code = 409


class CycleLocked(BudgetError):
    """The cycle is finalized, or an edit would reopen vetting after votes were cast."""

    status_code = 409


class ProposalLocked(BudgetError):
    """Vetting is over for this cycle; the candidate set is frozen."""

    status_code = 409


class AlreadyFinalized(BudgetError):
    """Another finalize call already committed this cycle.

    ``result`` holds the allocation that call persisted.
    """

    status_code = 409

    def __init__(self, cycle_id: str, result: AllocationResult | None = None) -> None:
        super().__init__(f"Cycle {cycle_id} is already finalized")
        self.cycle_id = cycle_id
        self.result = result
