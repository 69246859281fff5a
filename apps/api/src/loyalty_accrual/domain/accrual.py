"""Accrual record projection and error taxonomy for order reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from loyalty_accrual.models.order import TERMINAL_STATUSES, AccrualStatusEnum


class AccrualError(RuntimeError):
    """Base class for accrual reconciliation failures."""


class OrderStoreError(AccrualError):
    """Raised when the order store cannot read or persist accrual records."""


class OrdersNotFoundError(OrderStoreError):
    """Raised when a status query matches no orders.

    Callers treat this as an empty result rather than a failure.
    """

    def __init__(self, status: AccrualStatusEnum) -> None:
        super().__init__(f"No orders with status {status.value}")
        self.status = status


class AccrualOracleError(AccrualError):
    """Raised when the accrual authority cannot produce an outcome."""


class InvalidAccrualRecordError(AccrualError):
    """Raised when a record or transition breaks the accrual invariants."""


_FORWARD_TRANSITIONS: dict[AccrualStatusEnum, frozenset[AccrualStatusEnum]] = {
    AccrualStatusEnum.NEW: frozenset({AccrualStatusEnum.PROCESSING}),
    AccrualStatusEnum.PROCESSING: TERMINAL_STATUSES,
}


@dataclass(frozen=True)
class AccrualRecord:
    """Status/points projection of an order row."""

    order_id: str
    status: AccrualStatusEnum
    points: Decimal | None = None

    def __post_init__(self) -> None:
        if not self.order_id:
            raise InvalidAccrualRecordError("order_id must be a non-empty string")
        if (self.points is not None) != (self.status == AccrualStatusEnum.PROCESSED):
            raise InvalidAccrualRecordError(
                f"Order {self.order_id}: points must be set only for PROCESSED (status={self.status.value})"
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_advance_to(self, status: AccrualStatusEnum) -> bool:
        return status in _FORWARD_TRANSITIONS.get(self.status, frozenset())

    def advance(self, status: AccrualStatusEnum, points: Decimal | None = None) -> "AccrualRecord":
        """Return a copy moved forward to ``status``."""

        if not self.can_advance_to(status):
            raise InvalidAccrualRecordError(
                f"Order {self.order_id}: cannot move {self.status.value} -> {status.value}"
            )
        return replace(self, status=status, points=points)

    @property
    def prior_status(self) -> AccrualStatusEnum | None:
        """Status the order row must hold for this record to be written over it."""

        for source, targets in _FORWARD_TRANSITIONS.items():
            if self.status in targets:
                return source
        return None


@dataclass(frozen=True)
class AccrualResolution:
    """Terminal outcome returned by the accrual oracle."""

    status: AccrualStatusEnum
    points: Decimal | None = None

    def __post_init__(self) -> None:
        if self.status not in TERMINAL_STATUSES:
            raise InvalidAccrualRecordError(f"Oracle returned non-terminal status {self.status.value}")


__all__ = [
    "AccrualError",
    "AccrualOracleError",
    "AccrualRecord",
    "AccrualResolution",
    "InvalidAccrualRecordError",
    "OrderStoreError",
    "OrdersNotFoundError",
]
