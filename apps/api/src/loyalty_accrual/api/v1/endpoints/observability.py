from fastapi import APIRouter

from loyalty_accrual.observability.accrual import get_accrual_store

router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/accrual", summary="Accrual reconciliation counters")
async def accrual_metrics() -> dict[str, object]:
    return get_accrual_store().snapshot().as_dict()
