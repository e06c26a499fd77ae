"""Dashboard, statistics and backup export."""

import datetime as dt

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..alerts import AlertConfig
from ..auth import get_current_user
from ..consumption import history_start
from ..deps import get_alert_config, get_store
from ..models import Role, TxStatus
from ..rbac import require_role
from ..stats import MedicationState, consumption_statistics, dashboard_summary
from ..store import LedgerStore
from .common import build_transaction

router = APIRouter()

BACKUP_VERSION = "1.0"
RECENT_TRANSACTIONS = 5


def _build_alert(state: MedicationState) -> schemas.MedicationAlertOut:
    med = state.medication
    return schemas.MedicationAlertOut(
        id=med.id,
        name=med.name,
        stock=med.stock,
        status=state.status,
        expiry=med.expiry,
        expiry_status=state.expiry_status,
    )


@router.get("/", response_model=schemas.DashboardOut)
async def dashboard(
    store: LedgerStore = Depends(get_store),
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> schemas.DashboardOut:
    require_role(user)
    now = dt.datetime.utcnow()
    transactions = {}
    for tx in await store.list_transactions(since=history_start(now)):
        transactions[tx.id] = tx
    for tx in await store.list_transactions(status=TxStatus.PENDING.value):
        transactions[tx.id] = tx
    for tx in await store.list_transactions(limit=RECENT_TRANSACTIONS):
        transactions[tx.id] = tx
    summary = dashboard_summary(
        await store.list_medications(), transactions.values(), config, now, recent=RECENT_TRANSACTIONS
    )
    return schemas.DashboardOut(
        total_references=summary.total_references,
        total_units=summary.total_units,
        low=[_build_alert(state) for state in summary.low],
        critical=[_build_alert(state) for state in summary.critical],
        expiring=[_build_alert(state) for state in summary.expiring],
        pending_receptions=summary.pending_receptions,
        pending_incidents=summary.pending_incidents,
        recent=[build_transaction(tx) for tx in summary.recent],
    )


@router.get("/statistics", response_model=schemas.StatisticsOut)
async def statistics(
    days: int = Query(30, ge=1, le=365),
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.StatisticsOut:
    require_role(user)
    now = dt.datetime.utcnow()
    stats = consumption_statistics(
        await store.list_transactions(since=now - dt.timedelta(days=days)), days, now
    )
    return schemas.StatisticsOut(
        days=stats.days,
        total_units=stats.total_units,
        total_interventions=stats.total_interventions,
        top_consumed=[schemas.NamedCount(name=name, value=value) for name, value in stats.top_consumed],
        interventions=[schemas.NamedCount(name=name, value=value) for name, value in stats.interventions],
        daily=[schemas.DailyCount(date=day, value=value) for day, value in stats.daily],
    )


@router.get("/export", response_model=schemas.BackupOut)
async def export_backup(
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.BackupOut:
    require_role(user, Role.PHARMACIST)
    medications = await store.list_medications()
    transactions = await store.list_transactions()
    await store.log_activity(
        "backup",
        "export",
        "exported",
        {"medications": len(medications), "transactions": len(transactions)},
        user.id,
    )
    await store.commit()
    return schemas.BackupOut(
        version=BACKUP_VERSION,
        export_date=dt.datetime.utcnow(),
        medications=[
            schemas.MedicationRecord(
                id=med.id,
                name=med.name,
                stock=med.stock,
                is_narcotic=med.is_narcotic,
                expiry=med.expiry,
                created_at=med.created_at,
                updated_at=med.updated_at,
            )
            for med in medications
        ],
        transactions=[build_transaction(tx) for tx in transactions],
    )
