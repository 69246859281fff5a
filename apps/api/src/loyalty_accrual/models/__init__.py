"""SQLAlchemy models package."""

from .order import AccrualStatusEnum, Order, TERMINAL_STATUSES  # noqa: F401

__all__ = ["AccrualStatusEnum", "Order", "TERMINAL_STATUSES"]
