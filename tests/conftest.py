"""Shared test fixtures."""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from civicbudget.config import Settings
from civicbudget.db.engine import create_engine, create_tables, get_session
from civicbudget.db.models import BudgetCycleRow, BudgetProposalRow
from civicbudget.db.repository import Repository
from civicbudget.models.budget import ProposalCategory, ProposalStatus

# Fixed clock for every phase-dependent test. Windows are laid out around it.
NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


def _windows_for(phase: str) -> dict[str, datetime]:
    """Cycle windows that put NOW inside *phase* (draft/submission/vetting/voting/closed).

    Submission and voting are each one day wide with a one-day vetting gap.
    """
    start = NOW - {
        "draft": timedelta(days=-1),
        "submission": timedelta(hours=12),
        "vetting": timedelta(hours=36),
        "voting": timedelta(hours=60),
        "closed": timedelta(days=4),
    }[phase]
    return {
        "submission_start_at": start,
        "submission_end_at": start + timedelta(days=1),
        "voting_start_at": start + timedelta(days=2),
        "voting_end_at": start + timedelta(days=3),
    }


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(civic_env="development", database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
async def engine() -> AsyncEngine:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def file_engine(tmp_path) -> AsyncEngine:
    """A file-backed engine; concurrent sessions get their own connections."""
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'civic.db'}", busy_timeout_seconds=5)
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> Repository:
    """Yield a repository with a session bound to the in-memory database."""
    async with get_session(engine) as session:
        yield Repository(session)


CycleFactory = Callable[..., Awaitable[BudgetCycleRow]]
ProposalFactory = Callable[..., Awaitable[BudgetProposalRow]]


async def _make_cycle(
    repo: Repository,
    phase: str = "voting",
    *,
    budget: str = "1000",
    max_votes: int = 3,
    active: bool = True,
    min_cost: str = "0",
    max_cost: str | None = None,
) -> BudgetCycleRow:
    row = await repo.create_cycle(
        title=f"{phase} cycle",
        total_budget_amount=Decimal(budget),
        max_votes_per_user=max_votes,
        min_project_cost=Decimal(min_cost),
        max_project_cost=Decimal(max_cost) if max_cost is not None else None,
        **_windows_for(phase),
    )
    row.is_active = active
    await repo.session.flush()
    return row


async def _make_proposal(
    repo: Repository,
    cycle_id: str,
    cost: str = "100",
    *,
    status: ProposalStatus = ProposalStatus.APPROVED_FOR_VOTING,
    title: str = "Fix the footbridge",
    category: ProposalCategory = ProposalCategory.ROAD_INFRASTRUCTURE,
    ward: str | None = None,
    department: str | None = None,
    created_at: datetime | None = None,
) -> BudgetProposalRow:
    return await repo.create_proposal(
        cycle_id=cycle_id,
        author_id="author-1",
        title=title,
        description="Details",
        estimated_cost=Decimal(cost),
        category=category,
        ward=ward,
        department=department,
        status=status,
        created_at=created_at or NOW - timedelta(days=10),
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def windows() -> Callable[[str], dict[str, datetime]]:
    return _windows_for


@pytest.fixture
def make_cycle() -> CycleFactory:
    """``await make_cycle(repo, "voting", budget="500")`` builds an active cycle in that phase."""
    return _make_cycle


@pytest.fixture
def make_proposal() -> ProposalFactory:
    """``await make_proposal(repo, cycle_id, "250")`` builds an approved proposal."""
    return _make_proposal
