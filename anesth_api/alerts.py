"""Stock alert thresholds and status classifiers.

Thresholds are derived from the weighted monthly consumption (CMM) of each
medication. Coefficients are expressed in months of stock on hand and come
from an :class:`AlertConfig` that the caller loads once per request.
"""

from __future__ import annotations

import calendar
import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Any, Iterable

from pydantic import BaseModel, Field, model_validator

from .consumption import HISTORY_MONTHS, monthly_consumption, weighted_cmm

COLD_START_DAYS = 90


class AlertConfig(BaseModel):
    normal: float = Field(default=2.0, gt=0)
    low: float = Field(default=1.5, gt=0)
    critical: float = Field(default=1.0, gt=0)
    min_absolute: int = Field(default=2, ge=0)
    # legacy static thresholds, used when no reliable history exists
    static_normal: int = Field(default=20, ge=0)
    static_low: int = Field(default=10, ge=0)
    static_critical: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _check_coefficient_order(self) -> "AlertConfig":
        if not self.critical <= self.low <= self.normal:
            raise ValueError("Les coefficients doivent respecter critique <= faible <= normal")
        return self

    @model_validator(mode="after")
    def _check_static_order(self) -> "AlertConfig":
        if not self.static_critical <= self.static_low <= self.static_normal:
            raise ValueError("Les seuils statiques doivent respecter critique <= faible <= normal")
        return self


@dataclass(frozen=True)
class Thresholds:
    critical: int
    low: int
    normal: int
    is_dynamic: bool = False
    cmm: float = 0.0


def static_thresholds(config: AlertConfig | None = None) -> Thresholds:
    config = config or AlertConfig()
    return Thresholds(
        critical=config.static_critical,
        low=config.static_low,
        normal=config.static_normal,
        is_dynamic=False,
        cmm=0.0,
    )


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def thresholds_from_cmm(cmm: Decimal, config: AlertConfig) -> Thresholds:
    """Turn a CMM into bands; every value rounds up, then gets floored."""

    floor = Decimal(config.min_absolute)
    normal = _ceil(cmm * Decimal(str(config.normal)))
    low = _ceil(cmm * Decimal(str(config.low)))
    critical = _ceil(cmm * Decimal(str(config.critical)))
    return Thresholds(
        critical=max(critical, config.min_absolute),
        low=max(low, _ceil(floor * Decimal("1.5"))),
        normal=max(normal, config.min_absolute * 2),
        is_dynamic=True,
        cmm=float(cmm),
    )


def _is_cold_start(medication: Any, now: dt.datetime) -> bool:
    created_at = getattr(medication, "created_at", None)
    if created_at is None:
        return True
    return now - created_at < dt.timedelta(days=COLD_START_DAYS)


def dynamic_thresholds(
    med_id: Any,
    transactions: Iterable[Any],
    medications: Iterable[Any],
    config: AlertConfig | None = None,
    now: dt.datetime | None = None,
) -> Thresholds:
    config = config or AlertConfig()
    now = now or dt.datetime.utcnow()
    medication = next((med for med in medications if med.id == med_id), None)
    if medication is None or _is_cold_start(medication, now):
        return static_thresholds(config)

    history = monthly_consumption(med_id, transactions, HISTORY_MONTHS, now=now)
    if all(month.quantity == 0 for month in history):
        return static_thresholds(config)
    return thresholds_from_cmm(weighted_cmm(history), config)


def stock_status(quantity: int, thresholds: Thresholds) -> str:
    # strict for critical, inclusive for low
    if quantity < thresholds.critical:
        return "critical"
    if quantity <= thresholds.low:
        return "low"
    return "normal"


def _whole_months_between(start: dt.date, end: dt.date) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    end_is_month_end = end.day == calendar.monthrange(end.year, end.month)[1]
    if end.day < start.day and not end_is_month_end:
        months -= 1
    return months


def expiration_status(expiry: dt.date | None, today: dt.date | None = None) -> str | None:
    if expiry is None:
        return None
    today = today or dt.date.today()
    if expiry < today:
        return "expired"
    months = _whole_months_between(today, expiry)
    if months < 1:
        return "critical"
    if months <= 3:
        return "warning"
    if months <= 6:
        return "notice"
    return "ok"
