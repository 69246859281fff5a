"""Accrual reconciliation services."""

from .oracle import AccrualOracle, RandomAccrualOracle
from .reconciliation import PassSummary, ReconciliationLoop, ReconciliationMetrics
from .stages import Stage, StageOutcome, StageReport, StageWorkerPool

__all__ = [
    "AccrualOracle",
    "PassSummary",
    "RandomAccrualOracle",
    "ReconciliationLoop",
    "ReconciliationMetrics",
    "Stage",
    "StageOutcome",
    "StageReport",
    "StageWorkerPool",
]
