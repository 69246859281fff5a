"""Concurrent stage workers that advance accrual records one transition at a time."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from loguru import logger

from loyalty_accrual.domain.accrual import AccrualError, AccrualRecord
from loyalty_accrual.models.order import AccrualStatusEnum
from loyalty_accrual.observability.accrual import AccrualObservabilityStore, get_accrual_store
from loyalty_accrual.services.accrual.oracle import AccrualOracle
from loyalty_accrual.services.orders.store import OrderStore

Transition = Callable[[AccrualRecord], Awaitable[AccrualRecord]]


class Stage(str, Enum):
    PROMOTE = "promote"
    RESOLVE = "resolve"


@dataclass(frozen=True)
class StageOutcome:
    """Completion signal emitted once per consumed record."""

    order_id: str
    record: AccrualRecord | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class StageReport:
    stage: Stage
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "dispatched": self.dispatched,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def promote_transition() -> Transition:
    async def _promote(record: AccrualRecord) -> AccrualRecord:
        return record.advance(AccrualStatusEnum.PROCESSING)

    return _promote


def resolve_transition(oracle: AccrualOracle) -> Transition:
    async def _resolve(record: AccrualRecord) -> AccrualRecord:
        resolution = await oracle.resolve(record.order_id)
        return record.advance(resolution.status, resolution.points)

    return _resolve


class StageWorkerPool:
    """Fans one stage's batch out to workers and joins on their completion signals.

    Each ``run`` call owns a work queue sized to the batch and a signal queue; the
    call returns only after one signal per dispatched record has been received.
    """

    def __init__(
        self,
        stage: Stage,
        transition: Transition,
        store: OrderStore,
        *,
        concurrency: int = 4,
        observability: AccrualObservabilityStore | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.stage = stage
        self._transition = transition
        self._store = store
        self._concurrency = concurrency
        self._observability = observability or get_accrual_store()

    @classmethod
    def promote(cls, store: OrderStore, **kwargs: Any) -> "StageWorkerPool":
        return cls(Stage.PROMOTE, promote_transition(), store, **kwargs)

    @classmethod
    def resolve(cls, store: OrderStore, oracle: AccrualOracle, **kwargs: Any) -> "StageWorkerPool":
        return cls(Stage.RESOLVE, resolve_transition(oracle), store, **kwargs)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    async def run(self, records: Sequence[AccrualRecord]) -> StageReport:
        """Process ``records`` to exhaustion and wait for every completion signal."""

        report = StageReport(stage=self.stage, dispatched=len(records))
        if not records:
            return report

        work: asyncio.Queue[AccrualRecord] = asyncio.Queue(maxsize=len(records))
        signals: asyncio.Queue[StageOutcome] = asyncio.Queue(maxsize=len(records))
        for record in records:
            work.put_nowait(record)

        worker_count = min(self._concurrency, len(records))
        workers = [
            asyncio.create_task(self._worker(work, signals), name=f"accrual-{self.stage.value}-{index}")
            for index in range(worker_count)
        ]
        logger.debug(
            "Accrual stage dispatched",
            stage=self.stage.value,
            records=len(records),
            workers=worker_count,
        )

        try:
            for _ in range(len(records)):
                outcome = await signals.get()
                if outcome.succeeded:
                    report.succeeded += 1
                else:
                    report.failed += 1
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        return report

    async def _worker(
        self,
        work: asyncio.Queue[AccrualRecord],
        signals: asyncio.Queue[StageOutcome],
    ) -> None:
        while True:
            try:
                record = work.get_nowait()
            except asyncio.QueueEmpty:
                return
            outcome = await self._process(record)
            signals.put_nowait(outcome)

    async def _process(self, record: AccrualRecord) -> StageOutcome:
        try:
            updated = await self._transition(record)
            await self._store.persist(updated)
        except asyncio.CancelledError:
            raise
        except AccrualError as exc:
            self._observability.record_failure(self.stage.value, str(exc))
            logger.error(
                "Accrual transition failed",
                stage=self.stage.value,
                order_id=record.order_id,
                status=record.status.value,
                error=str(exc),
            )
            return StageOutcome(order_id=record.order_id, error=str(exc))
        except Exception as exc:
            self._observability.record_failure(self.stage.value, str(exc))
            logger.exception(
                "Unexpected accrual transition failure",
                stage=self.stage.value,
                order_id=record.order_id,
                status=record.status.value,
            )
            return StageOutcome(order_id=record.order_id, error=str(exc))

        if self.stage is Stage.PROMOTE:
            self._observability.record_promoted()
        else:
            self._observability.record_resolved(updated.status.value)
        logger.info(
            "Accrual record advanced",
            stage=self.stage.value,
            order_id=record.order_id,
            status=updated.status.value,
            points=str(updated.points) if updated.points is not None else None,
        )
        return StageOutcome(order_id=record.order_id, record=updated)


__all__ = [
    "Stage",
    "StageOutcome",
    "StageReport",
    "StageWorkerPool",
    "Transition",
    "promote_transition",
    "resolve_transition",
]
