"""Order persistence services."""

from .store import OrderStore, SqlAlchemyOrderStore

__all__ = ["OrderStore", "SqlAlchemyOrderStore"]
