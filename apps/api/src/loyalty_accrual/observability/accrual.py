"""In-memory accrual reconciliation observability store."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AccrualEventLog:
    """Most recent noteworthy reconciliation events."""

    last_pass_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_failure_message: str | None = None
    last_fetch_error_at: datetime | None = None
    last_fetch_error_message: str | None = None


@dataclass
class AccrualMetricsSnapshot:
    totals: Dict[str, int]
    outcomes: Dict[str, int]
    events: AccrualEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": self.totals,
            "outcomes": self.outcomes,
            "events": {
                "last_pass_at": self.events.last_pass_at.isoformat() if self.events.last_pass_at else None,
                "last_failure_at": self.events.last_failure_at.isoformat()
                if self.events.last_failure_at
                else None,
                "last_failure_message": self.events.last_failure_message,
                "last_fetch_error_at": self.events.last_fetch_error_at.isoformat()
                if self.events.last_fetch_error_at
                else None,
                "last_fetch_error_message": self.events.last_fetch_error_message,
            },
        }


@dataclass
class AccrualObservabilityStore:
    """Tracks reconciliation counters and recent events across loop instances."""

    _lock: Lock = field(default_factory=Lock)
    _totals: Counter = field(default_factory=Counter)
    _outcomes: Counter = field(default_factory=Counter)
    _events: AccrualEventLog = field(default_factory=AccrualEventLog)

    def record_pass(self) -> None:
        with self._lock:
            self._totals["passes"] += 1
            self._events.last_pass_at = _utcnow()

    def record_promoted(self) -> None:
        with self._lock:
            self._totals["promoted"] += 1

    def record_resolved(self, status: str) -> None:
        with self._lock:
            self._totals["resolved"] += 1
            self._outcomes[status] += 1

    def record_failure(self, stage: str, error_message: str) -> None:
        with self._lock:
            self._totals["failed"] += 1
            self._totals[f"failed:{stage}"] += 1
            self._events.last_failure_at = _utcnow()
            self._events.last_failure_message = error_message

    def record_fetch_error(self, status: str, error_message: str) -> None:
        with self._lock:
            self._totals["fetch_errors"] += 1
            self._events.last_fetch_error_at = _utcnow()
            self._events.last_fetch_error_message = f"{status}: {error_message}"

    def snapshot(self) -> AccrualMetricsSnapshot:
        with self._lock:
            totals = dict(self._totals)
            outcomes = dict(self._outcomes)
            events_copy = AccrualEventLog(
                last_pass_at=self._events.last_pass_at,
                last_failure_at=self._events.last_failure_at,
                last_failure_message=self._events.last_failure_message,
                last_fetch_error_at=self._events.last_fetch_error_at,
                last_fetch_error_message=self._events.last_fetch_error_message,
            )
        return AccrualMetricsSnapshot(totals=totals, outcomes=outcomes, events=events_copy)

    def reset(self) -> None:
        with self._lock:
            self._totals.clear()
            self._outcomes.clear()
            self._events = AccrualEventLog()


_STORE = AccrualObservabilityStore()


def get_accrual_store() -> AccrualObservabilityStore:
    return _STORE


__all__ = ["AccrualMetricsSnapshot", "AccrualObservabilityStore", "get_accrual_store"]
