from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SqlEnum, Integer, Numeric, String, func

from loyalty_accrual.db.base import Base


class AccrualStatusEnum(str, Enum):
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    INVALID = "INVALID"
    PROCESSED = "PROCESSED"
    REGISTERED = "REGISTERED"


TERMINAL_STATUSES = frozenset(
    {
        AccrualStatusEnum.PROCESSED,
        AccrualStatusEnum.INVALID,
        AccrualStatusEnum.REGISTERED,
    }
)


class Order(Base):
    """Submitted purchase order; status/accrual are owned by the reconciliation loop."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    status = Column(
        SqlEnum(AccrualStatusEnum, name="accrual_status_enum"),
        nullable=False,
        default=AccrualStatusEnum.NEW,
        server_default=AccrualStatusEnum.NEW.value,
        index=True,
    )
    accrual = Column(Numeric(14, 2), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
