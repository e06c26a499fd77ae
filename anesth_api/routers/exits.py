"""Routers for patient-linked stock exits."""

from fastapi import APIRouter, Depends, Query, status

from .. import schemas, workflow
from ..auth import get_current_user
from ..deps import get_store
from ..models import Role
from ..rbac import require_role
from ..store import LedgerStore
from .common import build_batch, build_batch_result

router = APIRouter()


@router.post("/", response_model=schemas.BatchResult, status_code=status.HTTP_201_CREATED)
async def create_exit(
    payload: schemas.ExitCreate,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.BatchResult:
    require_role(user, Role.ANESTHETIST)
    items = [workflow.LineItem(med_id=line.med_id, quantity=line.quantity) for line in payload.items]
    outcome = await workflow.remove_stock_batch(
        store,
        items,
        {
            "patient_initials": payload.patient_initials.strip().upper(),
            "patient_age": payload.patient_age,
            "intervention": payload.intervention,
            "intervention_date": payload.intervention_date,
        },
        user_id=user.id,
    )
    return build_batch_result(outcome)


@router.get("/", response_model=list[schemas.BatchOut])
async def list_exits(
    limit: int = Query(50, ge=1, le=500),
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.BatchOut]:
    require_role(user)
    return [build_batch(summary) for summary in await workflow.exit_history(store, limit)]
