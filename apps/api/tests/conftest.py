import asyncio
import sys
import time
from pathlib import Path

import pytest
import pytest_asyncio
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from loyalty_accrual.app import create_app  # noqa: E402
from loyalty_accrual.db.base import Base  # noqa: E402
from loyalty_accrual.db.session import get_session  # noqa: E402
from loyalty_accrual.domain.accrual import (  # noqa: E402
    AccrualRecord,
    OrderStoreError,
    OrdersNotFoundError,
)
from loyalty_accrual.models.order import AccrualStatusEnum  # noqa: E402
from loyalty_accrual.observability.accrual import get_accrual_store  # noqa: E402
from loyalty_accrual.services.orders import SqlAlchemyOrderStore  # noqa: E402

import loyalty_accrual.models  # noqa: E402,F401


class InMemoryOrderStore:
    """Order store double that records a timestamped call log."""

    def __init__(
        self,
        records: list[AccrualRecord] | None = None,
        *,
        persist_delay: float = 0.0,
        fail_persist_for: set[str] | None = None,
        fetch_errors: dict[AccrualStatusEnum, Exception] | None = None,
    ) -> None:
        self.rows: dict[str, AccrualRecord] = {record.order_id: record for record in records or []}
        self.persist_delay = persist_delay
        self.fail_persist_for = set(fail_persist_for or ())
        self.fetch_errors = dict(fetch_errors or {})
        self.calls: list[tuple[str, str, float]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_by_status(self, status: AccrualStatusEnum) -> list[AccrualRecord]:
        self.calls.append(("fetch", status.value, time.monotonic()))
        if status in self.fetch_errors:
            raise self.fetch_errors[status]
        matches = [record for record in self.rows.values() if record.status == status]
        if not matches:
            raise OrdersNotFoundError(status)
        return matches

    async def persist(self, record: AccrualRecord) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.persist_delay:
                await asyncio.sleep(self.persist_delay)
            if record.order_id in self.fail_persist_for:
                raise OrderStoreError(f"injected failure for {record.order_id}")
            self.rows[record.order_id] = record
            self.calls.append(("persist", record.order_id, time.monotonic()))
        finally:
            self.in_flight -= 1


@pytest.fixture
def in_memory_store_cls() -> type[InMemoryOrderStore]:
    return InMemoryOrderStore


@pytest.fixture(autouse=True)
def reset_accrual_observability():
    get_accrual_store().reset()
    yield
    get_accrual_store().reset()


@pytest.fixture
def log_records():
    records: list[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        yield records
    finally:
        logger.remove(handler_id)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def order_store(session_factory) -> SqlAlchemyOrderStore:
    return SqlAlchemyOrderStore(session_factory, serialize=True)


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
