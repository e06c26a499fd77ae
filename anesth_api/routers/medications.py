import datetime as dt
import uuid

from fastapi import APIRouter, Depends, Query, status

from .. import models, schemas
from ..alerts import AlertConfig, dynamic_thresholds
from ..auth import get_current_user
from ..consumption import HISTORY_MONTHS, consumption_trend, history_start, monthly_consumption
from ..deps import get_alert_config, get_store
from ..errors import api_error
from ..models import Role, TxStatus, TxType
from ..rbac import require_role
from ..stats import MedicationState, consumption_table, medication_states
from ..store import LedgerStore
from .common import build_thresholds

router = APIRouter()


def _build_medication(state: MedicationState) -> schemas.MedicationOut:
    med = state.medication
    return schemas.MedicationOut(
        id=med.id,
        name=med.name,
        stock=med.stock,
        is_narcotic=med.is_narcotic,
        expiry=med.expiry,
        created_at=med.created_at,
        status=state.status,
        expiry_status=state.expiry_status,
        thresholds=build_thresholds(state.thresholds),
    )


async def _consumption_lines(store: LedgerStore, now: dt.datetime) -> list[models.Transaction]:
    return await store.list_transactions(
        tx_type=TxType.OUT.value,
        status=TxStatus.VALIDATED.value,
        since=history_start(now),
    )


async def _get_medication(store: LedgerStore, med_id: uuid.UUID) -> models.Medication:
    medication = await store.get_medication(med_id)
    if medication is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "medication.not_found", "Médicament introuvable")
    return medication


@router.get("/", response_model=list[schemas.MedicationOut])
async def list_medications(
    q: str | None = Query(None, max_length=64),
    store: LedgerStore = Depends(get_store),
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> list[schemas.MedicationOut]:
    require_role(user)
    now = dt.datetime.utcnow()
    medications = await store.list_medications()
    if q:
        medications = [med for med in medications if q.lower() in med.name.lower()]
    states = medication_states(medications, await _consumption_lines(store, now), config, now)
    return [_build_medication(state) for state in states]


@router.post("/", response_model=schemas.MedicationOut, status_code=status.HTTP_201_CREATED)
async def create_medication(
    payload: schemas.MedicationCreate,
    store: LedgerStore = Depends(get_store),
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> schemas.MedicationOut:
    require_role(user, Role.ANESTHETIST)
    now = dt.datetime.utcnow()
    medication = models.Medication(
        id=uuid.uuid4(),
        name=payload.name.strip(),
        stock=payload.stock,
        is_narcotic=payload.is_narcotic,
        expiry=payload.expiry,
        created_at=now,
        updated_at=now,
    )
    await store.add_medication(medication)
    await store.log_activity(
        "medication", str(medication.id), "created", {"name": medication.name, "stock": medication.stock}, user.id
    )
    await store.commit()
    state = medication_states([medication], [], config, now)[0]
    return _build_medication(state)


@router.get("/consumption", response_model=list[schemas.ConsumptionRowOut])
async def consumption_overview(
    store: LedgerStore = Depends(get_store),
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> list[schemas.ConsumptionRowOut]:
    require_role(user)
    now = dt.datetime.utcnow()
    rows = consumption_table(await store.list_medications(), await _consumption_lines(store, now), config, now)
    return [
        schemas.ConsumptionRowOut(
            med_id=row.med_id,
            name=row.name,
            is_narcotic=row.is_narcotic,
            cmm=round(row.cmm, 2),
            trend=row.trend,
            trend_percentage=row.trend_percentage,
            thresholds=build_thresholds(row.thresholds),
        )
        for row in rows
    ]


@router.get("/{med_id}", response_model=schemas.MedicationOut)
async def get_medication(
    med_id: uuid.UUID,
    store: LedgerStore = Depends(get_store),
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> schemas.MedicationOut:
    require_role(user)
    now = dt.datetime.utcnow()
    medication = await _get_medication(store, med_id)
    state = medication_states([medication], await _consumption_lines(store, now), config, now)[0]
    return _build_medication(state)


@router.patch("/{med_id}", response_model=schemas.MedicationOut)
async def update_medication(
    med_id: uuid.UUID,
    payload: schemas.MedicationUpdate,
    store: LedgerStore = Depends(get_store),
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> schemas.MedicationOut:
    require_role(user, Role.ANESTHETIST, Role.PHARMACIST)
    await _get_medication(store, med_id)
    fields = payload.model_dump(exclude_unset=True)
    if fields:
        await store.update_medication(med_id, fields)
        await store.log_activity(
            "medication", str(med_id), "updated", {k: str(v) for k, v in fields.items()}, user.id
        )
        await store.commit()
    medication = await _get_medication(store, med_id)
    now = dt.datetime.utcnow()
    state = medication_states([medication], await _consumption_lines(store, now), config, now)[0]
    return _build_medication(state)


@router.get("/{med_id}/consumption", response_model=schemas.ConsumptionOut)
async def medication_consumption(
    med_id: uuid.UUID,
    months: int = Query(HISTORY_MONTHS, ge=2, le=24),
    store: LedgerStore = Depends(get_store),
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> schemas.ConsumptionOut:
    require_role(user)
    now = dt.datetime.utcnow()
    medication = await _get_medication(store, med_id)
    lines = await store.list_transactions(
        med_id=med_id,
        tx_type=TxType.OUT.value,
        status=TxStatus.VALIDATED.value,
        since=history_start(now, months),
    )
    history = monthly_consumption(med_id, lines, months, now=now)
    trend = consumption_trend(history)
    thresholds = dynamic_thresholds(med_id, lines, [medication], config, now=now)
    return schemas.ConsumptionOut(
        med_id=med_id,
        months=[
            schemas.MonthlyConsumptionOut(month=item.month, quantity=item.quantity, count=item.count)
            for item in history
        ],
        trend=trend.trend,
        trend_percentage=trend.percentage,
        thresholds=build_thresholds(thresholds),
    )
