"""Accrual authority that decides the terminal outcome of an order."""

from __future__ import annotations

import random
from decimal import ROUND_DOWN, Decimal
from typing import Protocol, runtime_checkable

from loyalty_accrual.core.settings import Settings
from loyalty_accrual.domain.accrual import AccrualResolution
from loyalty_accrual.models.order import AccrualStatusEnum

_CENTS = Decimal("0.01")


@runtime_checkable
class AccrualOracle(Protocol):
    async def resolve(self, order_id: str) -> AccrualResolution:
        """Return one terminal outcome for ``order_id``; raise ``AccrualOracleError`` on failure."""


class RandomAccrualOracle:
    """Simulated accrual system choosing uniformly among the terminal outcomes.

    ``REGISTERED`` is returned as-is even though the loop never polls it again.
    """

    _OUTCOMES = (
        AccrualStatusEnum.PROCESSED,
        AccrualStatusEnum.INVALID,
        AccrualStatusEnum.REGISTERED,
    )

    def __init__(self, *, rng: random.Random | None = None, points_ceiling: int = 1000) -> None:
        self._rng = rng or random.Random()
        self._points_ceiling = points_ceiling

    @classmethod
    def from_settings(cls, config: Settings) -> "RandomAccrualOracle":
        rng = random.Random(config.accrual_oracle_seed) if config.accrual_oracle_seed is not None else None
        return cls(rng=rng, points_ceiling=config.accrual_points_ceiling)

    async def resolve(self, order_id: str) -> AccrualResolution:
        status = self._rng.choice(self._OUTCOMES)
        if status is AccrualStatusEnum.PROCESSED:
            return AccrualResolution(status=status, points=self._draw_points())
        return AccrualResolution(status=status)

    def _draw_points(self) -> Decimal:
        raw = Decimal(str(self._rng.random() * self._points_ceiling))
        return raw.quantize(_CENTS, rounding=ROUND_DOWN)


__all__ = ["AccrualOracle", "RandomAccrualOracle"]
