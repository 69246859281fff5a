"""Fixed-interval loop reconciling order accrual statuses."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from loguru import logger
from opentelemetry import trace

from loyalty_accrual.core.settings import settings
from loyalty_accrual.domain.accrual import AccrualRecord, OrdersNotFoundError
from loyalty_accrual.models.order import AccrualStatusEnum
from loyalty_accrual.observability.accrual import get_accrual_store
from loyalty_accrual.services.accrual.oracle import AccrualOracle
from loyalty_accrual.services.accrual.stages import Stage, StageReport, StageWorkerPool
from loyalty_accrual.services.orders.store import OrderStore

_tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconciliationMetrics:
    """Counters for the lifetime of one loop instance."""

    passes: int = 0
    records_promoted: int = 0
    records_resolved: int = 0
    records_failed: int = 0
    fetch_errors: int = 0
    loop_errors: int = 0
    last_run_started_at: datetime | None = None
    last_run_finished_at: datetime | None = None
    last_run_duration_seconds: float | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "passes": self.passes,
            "records_promoted": self.records_promoted,
            "records_resolved": self.records_resolved,
            "records_failed": self.records_failed,
            "fetch_errors": self.fetch_errors,
            "loop_errors": self.loop_errors,
            "last_run_started_at": self.last_run_started_at.isoformat() if self.last_run_started_at else None,
            "last_run_finished_at": self.last_run_finished_at.isoformat() if self.last_run_finished_at else None,
            "last_run_duration_seconds": self.last_run_duration_seconds,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }


@dataclass
class PassSummary:
    promote: StageReport = field(default_factory=lambda: StageReport(stage=Stage.PROMOTE))
    resolve: StageReport = field(default_factory=lambda: StageReport(stage=Stage.RESOLVE))
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def dispatched(self) -> int:
        return self.promote.dispatched + self.resolve.dispatched

    @property
    def failed(self) -> int:
        return self.promote.failed + self.resolve.failed

    def as_dict(self) -> dict[str, Any]:
        return {
            "promote": self.promote.as_dict(),
            "resolve": self.resolve.as_dict(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ReconciliationLoop:
    """Polls NEW/PROCESSING orders and advances them, one non-overlapping pass per tick.

    Each pass fetches both statuses, runs the promote and resolve stages
    concurrently, and returns only after every dispatched record has signalled
    completion. Per-record and fetch failures are logged, never raised; records
    that were not persisted keep their status and are picked up again next pass.
    """

    def __init__(
        self,
        store: OrderStore,
        oracle: AccrualOracle,
        *,
        interval_seconds: float | None = None,
        concurrency: int | None = None,
    ) -> None:
        self._store = store
        self._oracle = oracle
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.accrual_poll_interval_seconds
        concurrency = concurrency if concurrency is not None else settings.accrual_stage_concurrency
        self._observability = get_accrual_store()
        self._promote_pool = StageWorkerPool.promote(store, concurrency=concurrency, observability=self._observability)
        self._resolve_pool = StageWorkerPool.resolve(
            store,
            oracle,
            concurrency=concurrency,
            observability=self._observability,
        )
        self._metrics = ReconciliationMetrics()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    @property
    def metrics(self) -> ReconciliationMetrics:
        return self._metrics

    @property
    def concurrency(self) -> int:
        return self._promote_pool.concurrency

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="accrual-reconciliation-loop")
        self.is_running = True
        logger.info(
            "Accrual reconciliation loop started",
            interval_seconds=self.interval_seconds,
            concurrency=self.concurrency,
        )

    async def stop(self) -> None:
        """Request shutdown and wait for the in-flight pass, if any, to finish."""

        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Accrual reconciliation loop stopped")

    async def run(self) -> None:
        """Wait one interval, run a pass, repeat until stopped or cancelled."""

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - run_once contains its own failures
                self._metrics.loop_errors += 1
                self._metrics.last_error = str(exc)
                self._metrics.last_error_at = _utcnow()
                logger.exception("Accrual reconciliation iteration failed", error=str(exc))

    async def run_once(self) -> PassSummary:
        """Execute one full fetch, dispatch and barrier pass."""

        summary = PassSummary(started_at=_utcnow())
        self._metrics.last_run_started_at = summary.started_at

        with _tracer.start_as_current_span("accrual.reconciliation_pass") as span:
            new_orders = await self._fetch(AccrualStatusEnum.NEW)
            processing_orders = await self._fetch(AccrualStatusEnum.PROCESSING)

            summary.promote, summary.resolve = await asyncio.gather(
                self._dispatch(self._promote_pool, new_orders),
                self._dispatch(self._resolve_pool, processing_orders),
            )
            span.set_attribute("accrual.dispatched", summary.dispatched)
            span.set_attribute("accrual.failed", summary.failed)

        summary.finished_at = _utcnow()
        self._record_pass(summary)
        if summary.dispatched:
            logger.info("Accrual reconciliation pass completed", summary=summary.as_dict())
        return summary

    async def _fetch(self, status: AccrualStatusEnum) -> list[AccrualRecord] | None:
        """Return orders in ``status``; ``None`` means the stage is skipped this pass."""

        try:
            return list(await self._store.fetch_by_status(status))
        except OrdersNotFoundError:
            logger.debug("No orders awaiting accrual", status=status.value)
            return []
        except Exception as exc:
            self._metrics.fetch_errors += 1
            self._metrics.last_error = str(exc)
            self._metrics.last_error_at = _utcnow()
            self._observability.record_fetch_error(status.value, str(exc))
            logger.error("Failed to fetch orders for accrual", status=status.value, error=str(exc))
            return None

    @staticmethod
    async def _dispatch(pool: StageWorkerPool, records: Sequence[AccrualRecord] | None) -> StageReport:
        if records is None:
            return StageReport(stage=pool.stage, skipped=True)
        return await pool.run(records)

    def _record_pass(self, summary: PassSummary) -> None:
        self._metrics.passes += 1
        self._metrics.records_promoted += summary.promote.succeeded
        self._metrics.records_resolved += summary.resolve.succeeded
        self._metrics.records_failed += summary.failed
        self._metrics.last_run_finished_at = summary.finished_at
        if summary.started_at and summary.finished_at:
            self._metrics.last_run_duration_seconds = (summary.finished_at - summary.started_at).total_seconds()
        self._observability.record_pass()

    def health_snapshot(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "concurrency": self.concurrency,
            "metrics": self._metrics.snapshot(),
        }


__all__ = ["PassSummary", "ReconciliationLoop", "ReconciliationMetrics"]
