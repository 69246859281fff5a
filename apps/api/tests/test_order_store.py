from decimal import Decimal

import pytest
from sqlalchemy import select

from loyalty_accrual.domain.accrual import AccrualRecord, OrderStoreError, OrdersNotFoundError
from loyalty_accrual.models.order import AccrualStatusEnum, Order
from loyalty_accrual.services.orders import OrderStore, SqlAlchemyOrderStore


@pytest.mark.asyncio
async def test_fetch_by_status_distinguishes_empty_result(order_store: SqlAlchemyOrderStore) -> None:
    with pytest.raises(OrdersNotFoundError) as excinfo:
        await order_store.fetch_by_status(AccrualStatusEnum.NEW)

    assert excinfo.value.status == AccrualStatusEnum.NEW
    assert isinstance(excinfo.value, OrderStoreError)


@pytest.mark.asyncio
async def test_create_and_fetch_new_orders(order_store: SqlAlchemyOrderStore) -> None:
    await order_store.create_order("12345678903", "user-1")
    await order_store.create_order("79927398713", "user-2")

    records = await order_store.fetch_by_status(AccrualStatusEnum.NEW)

    assert sorted(record.order_id for record in records) == ["12345678903", "79927398713"]
    assert all(record.points is None for record in records)
    with pytest.raises(OrdersNotFoundError):
        await order_store.fetch_by_status(AccrualStatusEnum.PROCESSING)


@pytest.mark.asyncio
async def test_create_duplicate_order_raises(order_store: SqlAlchemyOrderStore) -> None:
    await order_store.create_order("12345678903", "user-1")

    with pytest.raises(OrderStoreError):
        await order_store.create_order("12345678903", "user-2")


@pytest.mark.asyncio
async def test_persist_updates_status_and_points(order_store: SqlAlchemyOrderStore, session_factory) -> None:
    record = await order_store.create_order("12345678903", "user-1")

    await order_store.persist(record.advance(AccrualStatusEnum.PROCESSING))
    processing = await order_store.get_accrual("12345678903")
    assert processing == AccrualRecord(order_id="12345678903", status=AccrualStatusEnum.PROCESSING)

    await order_store.persist(processing.advance(AccrualStatusEnum.PROCESSED, Decimal("120.25")))

    async with session_factory() as session:
        order = (await session.execute(select(Order).where(Order.order_number == "12345678903"))).scalar_one()
    assert order.status == AccrualStatusEnum.PROCESSED
    assert Decimal(order.accrual) == Decimal("120.25")
    assert order.user_id == "user-1"


@pytest.mark.asyncio
async def test_persist_unknown_order_raises(order_store: SqlAlchemyOrderStore) -> None:
    with pytest.raises(OrderStoreError):
        await order_store.persist(AccrualRecord(order_id="missing", status=AccrualStatusEnum.PROCESSING))


@pytest.mark.asyncio
async def test_persist_rejects_stale_backward_transition(order_store: SqlAlchemyOrderStore) -> None:
    record = await order_store.create_order("42", "user-1")
    processing = record.advance(AccrualStatusEnum.PROCESSING)
    await order_store.persist(processing)
    await order_store.persist(processing.advance(AccrualStatusEnum.PROCESSED, Decimal("10.00")))

    with pytest.raises(OrderStoreError, match="Stale transition"):
        await order_store.persist(processing)

    assert await order_store.get_accrual("42") == AccrualRecord(
        order_id="42", status=AccrualStatusEnum.PROCESSED, points=Decimal("10.00")
    )


@pytest.mark.asyncio
async def test_persist_rejects_terminal_overwrite(order_store: SqlAlchemyOrderStore) -> None:
    record = await order_store.create_order("43", "user-1")
    processing = record.advance(AccrualStatusEnum.PROCESSING)
    await order_store.persist(processing)
    await order_store.persist(processing.advance(AccrualStatusEnum.INVALID))

    with pytest.raises(OrderStoreError):
        await order_store.persist(processing.advance(AccrualStatusEnum.PROCESSED, Decimal("5.00")))

    stored = await order_store.get_accrual("43")
    assert stored is not None
    assert stored.status == AccrualStatusEnum.INVALID
    assert stored.points is None


@pytest.mark.asyncio
async def test_persist_rejects_new_status(order_store: SqlAlchemyOrderStore) -> None:
    await order_store.create_order("44", "user-1")

    with pytest.raises(OrderStoreError):
        await order_store.persist(AccrualRecord(order_id="44", status=AccrualStatusEnum.NEW))


@pytest.mark.asyncio
async def test_get_accrual_returns_none_for_unknown_order(order_store: SqlAlchemyOrderStore) -> None:
    assert await order_store.get_accrual("unknown") is None


@pytest.mark.asyncio
async def test_sqlalchemy_store_satisfies_protocol(order_store: SqlAlchemyOrderStore) -> None:
    assert isinstance(order_store, OrderStore)
