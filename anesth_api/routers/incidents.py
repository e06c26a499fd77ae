"""Routers for breakage, expiry and loss reports."""

import uuid

from fastapi import APIRouter, Depends, status

from .. import schemas, workflow
from ..auth import get_current_user
from ..deps import get_store
from ..models import Role
from ..rbac import require_role
from ..store import LedgerStore
from .common import build_transaction

router = APIRouter()


@router.post("/", response_model=schemas.TransactionOut, status_code=status.HTTP_201_CREATED)
async def report_incident(
    payload: schemas.IncidentCreate,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.TransactionOut:
    require_role(user, Role.ANESTHETIST, Role.PHARMACIST)
    incident = await workflow.report_incident(
        store,
        payload.med_id,
        payload.quantity,
        payload.reason,
        payload.comment,
        user_id=user.id,
    )
    return build_transaction(incident)


@router.get("/pending", response_model=list[schemas.TransactionOut])
async def list_pending_incidents(
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.TransactionOut]:
    require_role(user)
    return [build_transaction(tx) for tx in await workflow.pending_incidents(store)]


@router.post("/{tx_id}/resolve", response_model=schemas.TransactionOut)
async def resolve_incident(
    tx_id: uuid.UUID,
    payload: schemas.IncidentResolve,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.TransactionOut:
    require_role(user, Role.PHARMACIST)
    incident = await workflow.validate_incident(
        store, tx_id, workflow.IncidentAction(payload.action), user_id=user.id
    )
    return build_transaction(incident)
