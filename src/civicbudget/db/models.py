"""SQLAlchemy ORM models for the civic budget database.

Tables: budget_cycles, budget_proposals, budget_votes, voter_quotas.
Votes are append-only. ``budget_proposals.vote_count`` and
``voter_quotas.votes_used`` are projections of the vote ledger kept in step
inside the same transaction that appends a vote.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from civicbudget.models.budget import ProposalCategory, ProposalStatus

# Money columns: up to a trillion with cents.
MONEY = Numeric(15, 2, asdecimal=True)


def _str_enum(enum_cls: type) -> Enum:
    """Store a StrEnum by its value in a VARCHAR column."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
    )


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class BudgetCycleRow(Base):
    __tablename__ = "budget_cycles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    total_budget_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    min_project_cost: Mapped[Decimal] = mapped_column(MONEY, default=Decimal(0))
    max_project_cost: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    max_votes_per_user: Mapped[int] = mapped_column(Integer, nullable=False)
    submission_start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    submission_end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    voting_start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    voting_end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    concluding_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    allocation_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    proposals: Mapped[list[BudgetProposalRow]] = relationship(back_populates="cycle")


class BudgetProposalRow(Base):
    __tablename__ = "budget_proposals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    cycle_id: Mapped[str] = mapped_column(ForeignKey("budget_cycles.id"), nullable=False)
    author_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[ProposalCategory] = mapped_column(
        _str_enum(ProposalCategory),
        default=ProposalCategory.OTHER,
    )
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ward: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    technical_cost: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ProposalStatus] = mapped_column(
        _str_enum(ProposalStatus),
        default=ProposalStatus.SUBMITTED,
    )
    vote_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    cycle: Mapped[BudgetCycleRow] = relationship(back_populates="proposals")

    __table_args__ = (
        Index("ix_budget_proposals_cycle_status", "cycle_id", "status"),
    )


class VoteRow(Base):
    """Append-only vote ledger. Source of truth for tallies and quota usage."""

    __tablename__ = "budget_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    cycle_id: Mapped[str] = mapped_column(ForeignKey("budget_cycles.id"), nullable=False)
    voter_id: Mapped[str] = mapped_column(String(36), nullable=False)
    proposal_id: Mapped[str] = mapped_column(ForeignKey("budget_proposals.id"), nullable=False)
    voted_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        UniqueConstraint(
            "cycle_id", "voter_id", "proposal_id", name="uq_vote_cycle_voter_proposal"
        ),
        Index("ix_budget_votes_cycle_voter", "cycle_id", "voter_id"),
        Index("ix_budget_votes_proposal", "proposal_id"),
    )


class VoterQuotaRow(Base):
    """Per-voter quota counter, advanced with a conditional update on each vote."""

    __tablename__ = "voter_quotas"

    cycle_id: Mapped[str] = mapped_column(ForeignKey("budget_cycles.id"), primary_key=True)
    voter_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    votes_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
