import sys
from datetime import date
from pathlib import Path
from typing import Sequence
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from perkmatch_api.app import create_app  # noqa: E402
from perkmatch_api.db.base import Base  # noqa: E402
from perkmatch_api.db.session import configure_sqlite_engine, get_session  # noqa: E402
from perkmatch_api.models import (  # noqa: E402
    Merchant,
    MerchantStatus,
    RewardProgram,
    RewardProgramStatus,
    RewardProgramType,
    Transaction,
    TransactionStatus,
)
from perkmatch_api.observability.matching import get_matching_store  # noqa: E402


async def _build_factory(url: str):
    engine = configure_sqlite_engine(create_async_engine(url, future=True))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _build_factory("sqlite+aiosqlite:///:memory:")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Temp-file database so concurrent sessions get their own connections."""

    engine, factory = await _build_factory(f"sqlite+aiosqlite:///{tmp_path / 'perkmatch.db'}")
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_matching_store():
    store = get_matching_store()
    store.reset()
    yield store
    store.reset()


class Seeder:
    """Insert directory and feed rows with sensible defaults."""

    async def merchant(
        self,
        session: AsyncSession,
        *,
        name: str = "Blue Bottle Coffee",
        owner_id: str = "owner-1",
        status: MerchantStatus = MerchantStatus.VERIFIED,
        category_codes: Sequence[str] = ("coffee",),
    ) -> Merchant:
        merchant = Merchant(
            name=name,
            owner_id=owner_id,
            status=status,
            category_codes=list(category_codes),
            statement_descriptors=[],
        )
        session.add(merchant)
        await session.flush()
        return merchant

    async def visit_program(
        self,
        session: AsyncSession,
        merchant_id: UUID,
        *,
        required_visits: int = 3,
        minimum_spend_minor: int | None = None,
        status: RewardProgramStatus = RewardProgramStatus.ACTIVE,
        reward_description: str = "Free coffee",
    ) -> RewardProgram:
        program = RewardProgram(
            merchant_id=merchant_id,
            name=f"{required_visits} visits",
            program_type=RewardProgramType.VISIT,
            required_visits=required_visits,
            minimum_spend_minor=minimum_spend_minor,
            reward_description=reward_description,
            status=status,
        )
        session.add(program)
        await session.flush()
        return program

    async def spend_program(
        self,
        session: AsyncSession,
        merchant_id: UUID,
        *,
        threshold_minor: int = 10000,
        status: RewardProgramStatus = RewardProgramStatus.ACTIVE,
        reward_description: str = "$10 off",
    ) -> RewardProgram:
        program = RewardProgram(
            merchant_id=merchant_id,
            name=f"Spend {threshold_minor}",
            program_type=RewardProgramType.SPEND,
            spend_threshold_minor=threshold_minor,
            reward_description=reward_description,
            status=status,
        )
        session.add(program)
        await session.flush()
        return program

    async def transaction(
        self,
        session: AsyncSession,
        *,
        customer_id: str = "customer-1",
        merchant_name: str | None = "Blue Bottle Coffee",
        amount_minor: int = 500,
        posted_on: date = date(2026, 10, 1),
        categories: Sequence[str] = ("coffee",),
        external_id: str | None = None,
        status: TransactionStatus = TransactionStatus.UNRESOLVED,
    ) -> Transaction:
        transaction = Transaction(
            external_id=external_id or f"ext-{uuid4().hex}",
            customer_id=customer_id,
            amount_minor=amount_minor,
            currency="USD",
            merchant_name=merchant_name,
            categories=list(categories),
            posted_on=posted_on,
            status=status,
        )
        session.add(transaction)
        await session.flush()
        return transaction


@pytest.fixture
def seed() -> Seeder:
    return Seeder()
