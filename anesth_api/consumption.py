"""Monthly consumption history, trend and weighted CMM per medication.

Everything here is a pure function of its inputs: the caller passes the
ledger lines it already loaded and, optionally, the reference ``now``.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Iterable, Sequence

from .models import TxStatus, TxType

CMM_WEIGHTS: tuple[Decimal, ...] = (Decimal("0.5"), Decimal("0.3"), Decimal("0.2"))
TREND_THRESHOLD_PCT = 10
HISTORY_MONTHS = 3


@dataclass(frozen=True)
class MonthlyConsumption:
    month: dt.date  # first day of the calendar month
    quantity: int
    count: int


@dataclass(frozen=True)
class Trend:
    trend: str  # increasing | decreasing | stable | unknown
    percentage: int


def _shift_month(day: dt.date, months_back: int) -> dt.date:
    index = day.year * 12 + (day.month - 1) - months_back
    return dt.date(index // 12, index % 12 + 1, 1)


def _is_consumption(tx: Any, med_id: Any) -> bool:
    return (
        tx.med_id == med_id
        and tx.type == TxType.OUT.value
        and tx.status == TxStatus.VALIDATED.value
        and tx.date is not None
    )


def monthly_consumption(
    med_id: Any,
    transactions: Iterable[Any],
    n: int = HISTORY_MONTHS,
    now: dt.datetime | None = None,
) -> list[MonthlyConsumption]:
    """Validated OUT quantities for the ``n`` latest calendar months, newest first."""

    reference = (now or dt.datetime.utcnow()).date()
    months = [_shift_month(reference, i) for i in range(max(n, 0))]
    totals = {month: [0, 0] for month in months}
    for tx in transactions:
        if not _is_consumption(tx, med_id):
            continue
        bucket = totals.get(dt.date(tx.date.year, tx.date.month, 1))
        if bucket is None:
            continue
        bucket[0] += int(tx.quantity)
        bucket[1] += 1
    return [MonthlyConsumption(month=month, quantity=totals[month][0], count=totals[month][1]) for month in months]


def consumption_trend(monthly: Sequence[MonthlyConsumption]) -> Trend:
    """Compare the current month against the average of the two previous ones."""

    if len(monthly) < 2:
        return Trend(trend="unknown", percentage=0)
    older = monthly[1:3]
    baseline = Decimal(sum(item.quantity for item in older)) / len(older)
    if baseline == 0:
        return Trend(trend="stable", percentage=0)
    ratio = Decimal(100) * (monthly[0].quantity - baseline) / baseline
    # halves round towards +inf
    percentage = int((ratio + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))
    if percentage > TREND_THRESHOLD_PCT:
        return Trend(trend="increasing", percentage=percentage)
    if percentage < -TREND_THRESHOLD_PCT:
        return Trend(trend="decreasing", percentage=percentage)
    return Trend(trend="stable", percentage=percentage)


def weighted_cmm(monthly: Sequence[MonthlyConsumption]) -> Decimal:
    """Consommation Moyenne Mensuelle, current month weighted heaviest."""

    return sum(
        (Decimal(item.quantity) * weight for item, weight in zip(monthly, CMM_WEIGHTS)),
        Decimal(0),
    )


def history_start(now: dt.datetime | None = None, n: int = HISTORY_MONTHS) -> dt.datetime:
    """Start of the oldest calendar month covered by :func:`monthly_consumption`."""

    first = _shift_month((now or dt.datetime.utcnow()).date(), max(n - 1, 0))
    return dt.datetime(first.year, first.month, 1)
