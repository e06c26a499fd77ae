"""Routers for deliveries awaiting pharmacist validation."""

import uuid

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
async def create_reception(
    payload: schemas.ReceptionCreate,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.BatchResult:
    require_role(user, Role.ANESTHETIST, Role.PHARMACIST)
    items = [
        workflow.LineItem(med_id=line.med_id, quantity=line.quantity, expiry_date=line.expiry_date)
        for line in payload.items
    ]
    batch_id = await workflow.add_stock_batch(
        store,
        items,
        {
            "supplier": payload.supplier,
            "reception_date": payload.reception_date,
            "comment": payload.comment,
        },
        user_id=user.id,
    )
    return schemas.BatchResult(batch_id=batch_id, lines=len(items))


@router.get("/", response_model=list[schemas.BatchOut])
async def list_receptions(
    limit: int = Query(50, ge=1, le=500),
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.BatchOut]:
    require_role(user)
    return [build_batch(summary) for summary in await workflow.reception_history(store, limit)]


@router.get("/pending", response_model=list[schemas.BatchOut])
async def list_pending_receptions(
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.BatchOut]:
    require_role(user)
    return [build_batch(summary) for summary in await workflow.pending_receptions(store)]


@router.post("/{batch_id}/validate", response_model=schemas.BatchResult)
async def validate_reception(
    batch_id: uuid.UUID,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.BatchResult:
    require_role(user, Role.PHARMACIST)
    outcome = await workflow.validate_reception(store, batch_id, user_id=user.id)
    return build_batch_result(outcome)


@router.post("/{batch_id}/reject", response_model=schemas.BatchResult)
async def reject_reception(
    batch_id: uuid.UUID,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.BatchResult:
    require_role(user, Role.PHARMACIST)
    outcome = await workflow.invalidate_reception(store, batch_id, user_id=user.id)
    return build_batch_result(outcome)
