"""Read-side aggregates for the dashboard, statistics and consumption table."""

from __future__ import annotations

import datetime as dt
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from . import models
from .alerts import AlertConfig, Thresholds, dynamic_thresholds, expiration_status, stock_status
from .consumption import HISTORY_MONTHS, consumption_trend, monthly_consumption
from .models import TxCategory, TxStatus, TxType

EXPIRING_STATUSES = ("critical", "warning")
DEFAULT_INTERVENTION = "Autre"
TOP_CONSUMED = 10


@dataclass
class MedicationState:
    medication: models.Medication
    thresholds: Thresholds
    status: str
    expiry_status: Optional[str]


@dataclass
class ConsumptionRow:
    med_id: Any
    name: str
    is_narcotic: bool
    cmm: float
    trend: str
    trend_percentage: int
    thresholds: Thresholds


@dataclass
class DashboardSummary:
    total_references: int
    total_units: int
    low: list[MedicationState] = field(default_factory=list)
    critical: list[MedicationState] = field(default_factory=list)
    expiring: list[MedicationState] = field(default_factory=list)
    pending_receptions: int = 0
    pending_incidents: int = 0
    recent: list[models.Transaction] = field(default_factory=list)


@dataclass
class Statistics:
    days: int
    total_units: int
    total_interventions: int
    top_consumed: list[tuple[str, int]]
    interventions: list[tuple[str, int]]
    daily: list[tuple[dt.date, int]]


def medication_states(
    medications: Iterable[models.Medication],
    transactions: Iterable[models.Transaction],
    config: AlertConfig,
    now: Optional[dt.datetime] = None,
) -> list[MedicationState]:
    now = now or dt.datetime.utcnow()
    medications = list(medications)
    transactions = list(transactions)
    states = []
    for med in medications:
        thresholds = dynamic_thresholds(med.id, transactions, medications, config, now=now)
        states.append(
            MedicationState(
                medication=med,
                thresholds=thresholds,
                status=stock_status(int(med.stock or 0), thresholds),
                expiry_status=expiration_status(med.expiry, now.date()),
            )
        )
    return states


def consumption_table(
    medications: Iterable[models.Medication],
    transactions: Iterable[models.Transaction],
    config: AlertConfig,
    now: Optional[dt.datetime] = None,
) -> list[ConsumptionRow]:
    now = now or dt.datetime.utcnow()
    medications = list(medications)
    transactions = list(transactions)
    rows = []
    for med in medications:
        trend = consumption_trend(monthly_consumption(med.id, transactions, HISTORY_MONTHS, now=now))
        thresholds = dynamic_thresholds(med.id, transactions, medications, config, now=now)
        rows.append(
            ConsumptionRow(
                med_id=med.id,
                name=med.name,
                is_narcotic=bool(med.is_narcotic),
                cmm=thresholds.cmm,
                trend=trend.trend,
                trend_percentage=trend.percentage,
                thresholds=thresholds,
            )
        )
    rows.sort(key=lambda row: row.name.lower())
    return rows


def dashboard_summary(
    medications: Iterable[models.Medication],
    transactions: Iterable[models.Transaction],
    config: AlertConfig,
    now: Optional[dt.datetime] = None,
    recent: int = 5,
) -> DashboardSummary:
    transactions = sorted(transactions, key=lambda tx: tx.date, reverse=True)
    states = medication_states(medications, transactions, config, now)
    summary = DashboardSummary(
        total_references=len(states),
        total_units=sum(int(state.medication.stock or 0) for state in states),
        recent=transactions[:recent],
    )
    for state in states:
        if state.status == "critical":
            summary.critical.append(state)
        elif state.status == "low":
            summary.low.append(state)
        if state.expiry_status in EXPIRING_STATUSES:
            summary.expiring.append(state)
    pending = [tx for tx in transactions if tx.status == TxStatus.PENDING.value]
    summary.pending_receptions = len(
        {tx.batch_id for tx in pending if tx.type == TxType.IN.value and tx.category == TxCategory.NORMAL.value}
    )
    summary.pending_incidents = sum(1 for tx in pending if tx.category == TxCategory.INCIDENT.value)
    return summary


def consumption_statistics(
    transactions: Iterable[models.Transaction],
    days: int = 30,
    now: Optional[dt.datetime] = None,
) -> Statistics:
    """Patient exits over the last ``days`` days."""

    now = now or dt.datetime.utcnow()
    start = now - dt.timedelta(days=days)
    exits = [
        tx
        for tx in transactions
        if tx.type == TxType.OUT.value
        and tx.status == TxStatus.VALIDATED.value
        and tx.category == TxCategory.NORMAL.value
        and tx.date > start
    ]

    by_medication: Counter[str] = Counter()
    by_day: dict[dt.date, int] = defaultdict(int)
    interventions: dict[Any, str] = {}
    for tx in exits:
        by_medication[tx.med_name] += int(tx.quantity)
        by_day[tx.date.date()] += int(tx.quantity)
        key = tx.batch_id if tx.batch_id is not None else tx.id
        interventions[key] = (tx.details or {}).get("intervention") or DEFAULT_INTERVENTION

    first_day = start.date()
    daily = [
        (first_day + dt.timedelta(days=offset), by_day.get(first_day + dt.timedelta(days=offset), 0))
        for offset in range((now.date() - first_day).days + 1)
    ]
    return Statistics(
        days=days,
        total_units=sum(by_medication.values()),
        total_interventions=len(interventions),
        top_consumed=by_medication.most_common(TOP_CONSUMED),
        interventions=sorted(Counter(interventions.values()).items(), key=lambda item: (-item[1], item[0])),
        daily=daily,
    )
