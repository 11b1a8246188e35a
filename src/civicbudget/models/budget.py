"""Budget models — Cycles, Proposals, Votes, and allocation results.

Money is Decimal throughout; timestamps are timezone-aware UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator


class Phase(StrEnum):
    """Lifecycle stage of a cycle. Derived from timestamps, never stored."""

    DRAFT = "draft"
    SUBMISSION = "submission"
    VETTING = "vetting"
    VOTING = "voting"
    CLOSED = "closed"
    FINALIZED = "finalized"


class ProposalStatus(StrEnum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED_FOR_VOTING = "approved_for_voting"
    REJECTED = "rejected"
    SELECTED = "selected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ProposalCategory(StrEnum):
    ROAD_INFRASTRUCTURE = "road_infrastructure"
    WATER_SANITATION = "water_sanitation"
    HEALTH_SAFETY = "health_safety"
    PARKS_ENVIRONMENT = "parks_environment"
    EDUCATION_CULTURE = "education_culture"
    AGRICULTURE = "agriculture"
    OTHER = "other"


# Statuses a proposal can hold once finalization has picked it.
FUNDED_STATUSES = frozenset(
    {ProposalStatus.SELECTED, ProposalStatus.IN_PROGRESS, ProposalStatus.COMPLETED}
)

# Candidates for a live allocation.
VOTABLE_STATUSES = frozenset({ProposalStatus.APPROVED_FOR_VOTING})

# Candidates when re-running allocation for a cycle that has already been finalized.
HISTORICAL_STATUSES = VOTABLE_STATUSES | FUNDED_STATUSES


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back out)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CycleWindows(BaseModel):
    """The four timestamps that drive phase resolution."""

    submission_start_at: datetime
    submission_end_at: datetime
    voting_start_at: datetime
    voting_end_at: datetime

    @field_validator(
        "submission_start_at", "submission_end_at", "voting_start_at", "voting_end_at"
    )
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _windows_in_order(self) -> CycleWindows:
        if not (
            self.submission_start_at
            <= self.submission_end_at
            <= self.voting_start_at
            <= self.voting_end_at
        ):
            msg = (
                "Cycle windows must satisfy submission_start <= submission_end"
                " <= voting_start <= voting_end"
            )
            raise ValueError(msg)
        return self


class CycleDraft(CycleWindows):
    """Administrator input for a new cycle."""

    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    total_budget_amount: Decimal = Field(ge=0)
    min_project_cost: Decimal = Field(default=Decimal(0), ge=0)
    max_project_cost: Decimal | None = Field(default=None, ge=0)
    max_votes_per_user: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _cost_bounds_in_order(self) -> CycleDraft:
        if self.max_project_cost is not None and self.max_project_cost < self.min_project_cost:
            msg = "max_project_cost must not be below min_project_cost"
            raise ValueError(msg)
        return self


class BudgetCycle(BaseModel):
    """A time-boxed participatory budgeting round."""

    id: str
    title: str
    description: str = ""
    total_budget_amount: Decimal
    min_project_cost: Decimal = Decimal(0)
    max_project_cost: Decimal | None = None
    max_votes_per_user: int = Field(ge=1)
    submission_start_at: datetime
    submission_end_at: datetime
    voting_start_at: datetime
    voting_end_at: datetime
    is_active: bool = False
    finalized_at: datetime | None = None
    concluding_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = {"from_attributes": True}

    @field_validator(
        "submission_start_at",
        "submission_end_at",
        "voting_start_at",
        "voting_end_at",
        "finalized_at",
        "created_at",
    )
    @classmethod
    def _normalize_tz(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class ProposalDraft(BaseModel):
    """Citizen input for a new proposal."""

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    category: ProposalCategory = ProposalCategory.OTHER
    department: str | None = None
    ward: str | None = None
    address_text: str | None = None
    estimated_cost: Decimal = Field(gt=0)


class BudgetProposal(BaseModel):
    """A capital-project proposal competing for a cycle's budget."""

    id: str
    cycle_id: str
    author_id: str
    title: str
    description: str = ""
    category: ProposalCategory = ProposalCategory.OTHER
    department: str | None = None
    ward: str | None = None
    address_text: str | None = None
    estimated_cost: Decimal
    technical_cost: Decimal | None = None
    admin_notes: str | None = None
    status: ProposalStatus = ProposalStatus.SUBMITTED
    vote_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def allocation_cost(self) -> Decimal:
        """Cost used for allocation: the technical estimate once review produced one."""
        if self.technical_cost is not None:
            return self.technical_cost
        return self.estimated_cost


class VoteReceipt(BaseModel):
    """Returned to the citizen after a successful vote."""

    vote_id: str
    proposal_id: str
    remaining_votes: int = Field(ge=0)


class AllocationResult(BaseModel):
    """Winner set and budget utilization for one allocation run."""

    selected: list[BudgetProposal] = Field(default_factory=list)
    budget: Decimal
    total_cost: Decimal = Decimal(0)
    remaining_budget: Decimal
    utilization_rate: float = 0.0
    considered_count: int = 0

    @property
    def selected_ids(self) -> list[str]:
        return [p.id for p in self.selected]


class CycleAnalytics(BaseModel):
    """Participation breakdown for a cycle, counted from the vote ledger."""

    cycle_id: str
    total_votes: int = 0
    total_proposals: int = 0
    unique_voters: int = 0
    votes_by_category: dict[str, int] = Field(default_factory=dict)
    votes_by_ward: dict[str, int] = Field(default_factory=dict)
    votes_by_department: dict[str, int] = Field(default_factory=dict)


class CycleUpdate(BaseModel):
    """Partial administrative edit. Merged onto the stored cycle and re-validated."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    total_budget_amount: Decimal | None = Field(default=None, ge=0)
    min_project_cost: Decimal | None = Field(default=None, ge=0)
    max_project_cost: Decimal | None = Field(default=None, ge=0)
    max_votes_per_user: int | None = Field(default=None, ge=1)
    submission_start_at: datetime | None = None
    submission_end_at: datetime | None = None
    voting_start_at: datetime | None = None
    voting_end_at: datetime | None = None
