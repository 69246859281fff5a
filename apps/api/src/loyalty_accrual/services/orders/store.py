"""Order persistence used by the accrual reconciliation loop."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Protocol, runtime_checkable

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from loyalty_accrual.domain.accrual import (
    AccrualRecord,
    InvalidAccrualRecordError,
    OrderStoreError,
    OrdersNotFoundError,
)
from loyalty_accrual.models.order import AccrualStatusEnum, Order

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


@runtime_checkable
class OrderStore(Protocol):
    """Persistence operations the reconciliation loop depends on.

    Implementations must tolerate concurrent ``persist`` calls from many workers.
    """

    async def fetch_by_status(self, status: AccrualStatusEnum) -> list[AccrualRecord]:
        """Return records in ``status``; raise ``OrdersNotFoundError`` when none match."""

    async def persist(self, record: AccrualRecord) -> None:
        """Write ``record``'s status and points back to its order row."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlAlchemyOrderStore:
    """OrderStore backed by the ``orders`` table.

    Every operation runs in its own session. SQLite only tolerates one writer,
    so operations are serialised through a lock when ``serialize`` is set.
    """

    def __init__(self, session_factory: SessionFactory, *, serialize: bool = False) -> None:
        self._session_factory = session_factory
        self._lock = asyncio.Lock() if serialize else None

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "SqlAlchemyOrderStore":
        factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
        return cls(factory, serialize=engine.dialect.name == "sqlite")

    async def fetch_by_status(self, status: AccrualStatusEnum) -> list[AccrualRecord]:
        stmt = select(Order.order_number, Order.status, Order.accrual).where(Order.status == status)
        try:
            async with self._session() as db:
                rows = (await db.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise OrderStoreError(f"Failed to fetch {status.value} orders: {exc}") from exc

        if not rows:
            raise OrdersNotFoundError(status)

        records: list[AccrualRecord] = []
        for order_number, row_status, accrual in rows:
            try:
                records.append(AccrualRecord(order_id=order_number, status=row_status, points=accrual))
            except InvalidAccrualRecordError as exc:
                logger.warning("Skipping inconsistent order row", order_id=order_number, error=str(exc))
        return records

    async def persist(self, record: AccrualRecord) -> None:
        """Write ``record`` only if the row still holds the status it advanced from."""

        prior = record.prior_status
        if prior is None:
            raise OrderStoreError(f"Order {record.order_id}: {record.status.value} is not a persistable transition")
        stmt = (
            update(Order)
            .where(Order.order_number == record.order_id, Order.status == prior)
            .values(status=record.status, accrual=record.points, updated_at=_utcnow())
        )
        try:
            async with self._session() as db:
                result = await db.execute(stmt)
                if result.rowcount == 0:
                    await db.rollback()
                    raise OrderStoreError(
                        f"Stale transition for order {record.order_id}: "
                        f"missing or no longer {prior.value} (target {record.status.value})"
                    )
                await db.commit()
        except SQLAlchemyError as exc:
            raise OrderStoreError(f"Failed to persist order {record.order_id}: {exc}") from exc

    async def create_order(self, order_id: str, user_id: str) -> AccrualRecord:
        """Register a newly submitted order in ``NEW`` state."""

        order = Order(order_number=order_id, user_id=user_id, status=AccrualStatusEnum.NEW)
        try:
            async with self._session() as db:
                db.add(order)
                await db.commit()
        except IntegrityError as exc:
            raise OrderStoreError(f"Order {order_id} already exists") from exc
        except SQLAlchemyError as exc:
            raise OrderStoreError(f"Failed to create order {order_id}: {exc}") from exc
        return AccrualRecord(order_id=order_id, status=AccrualStatusEnum.NEW)

    async def get_accrual(self, order_id: str) -> AccrualRecord | None:
        stmt = select(Order.order_number, Order.status, Order.accrual).where(Order.order_number == order_id)
        try:
            async with self._session() as db:
                row = (await db.execute(stmt)).one_or_none()
        except SQLAlchemyError as exc:
            raise OrderStoreError(f"Failed to load order {order_id}: {exc}") from exc
        if row is None:
            return None
        return AccrualRecord(order_id=row[0], status=row[1], points=row[2])

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._lock is None:
            async with await self._ensure_session() as db:
                yield db
            return
        async with self._lock:
            async with await self._ensure_session() as db:
                yield db

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["OrderStore", "SessionFactory", "SqlAlchemyOrderStore"]
