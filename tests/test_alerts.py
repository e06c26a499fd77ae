import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError

from anesth_api.alerts import (
    AlertConfig,
    Thresholds,
    dynamic_thresholds,
    expiration_status,
    static_thresholds,
    stock_status,
    thresholds_from_cmm,
)
from conftest import NOW, make_medication, make_transaction


def _fentanyl_history():
    fentanyl = make_medication("Fentanyl 100µg", 50, is_narcotic=True)
    transactions = [
        make_transaction(fentanyl, 10, dt.datetime(2024, 6, 5)),
        make_transaction(fentanyl, 8, dt.datetime(2024, 5, 5)),
        make_transaction(fentanyl, 6, dt.datetime(2024, 4, 5)),
    ]
    return fentanyl, transactions


def test_fentanyl_thresholds_from_three_months_of_exits() -> None:
    fentanyl, transactions = _fentanyl_history()

    thresholds = dynamic_thresholds(fentanyl.id, transactions, [fentanyl], AlertConfig(), now=NOW)

    assert thresholds.is_dynamic
    assert thresholds.cmm == pytest.approx(8.6)
    assert (thresholds.normal, thresholds.low, thresholds.critical) == (18, 13, 9)
    assert stock_status(50, thresholds) == "normal"


def test_cold_start_uses_static_thresholds() -> None:
    fentanyl, transactions = _fentanyl_history()
    fentanyl.created_at = NOW - dt.timedelta(days=30)

    thresholds = dynamic_thresholds(fentanyl.id, transactions, [fentanyl], AlertConfig(), now=NOW)

    assert thresholds == Thresholds(critical=5, low=10, normal=20, is_dynamic=False, cmm=0.0)


def test_no_consumption_or_unknown_medication_falls_back_to_static() -> None:
    med = make_medication("Atropine", 12)

    assert not dynamic_thresholds(med.id, [], [med], now=NOW).is_dynamic
    assert dynamic_thresholds("missing", [], [med], now=NOW) == static_thresholds()


def test_static_thresholds_follow_config() -> None:
    config = AlertConfig(static_normal=30, static_low=12, static_critical=4)

    assert static_thresholds(config) == Thresholds(critical=4, low=12, normal=30)


def test_small_cmm_is_floored_by_minimum_absolute() -> None:
    thresholds = thresholds_from_cmm(Decimal("0.5"), AlertConfig())

    assert (thresholds.critical, thresholds.low, thresholds.normal) == (2, 3, 4)


def test_zero_minimum_absolute_keeps_raw_bands() -> None:
    thresholds = thresholds_from_cmm(Decimal("0.5"), AlertConfig(min_absolute=0))

    assert (thresholds.critical, thresholds.low, thresholds.normal) == (1, 1, 1)


@pytest.mark.parametrize(
    ("field", "coefficients"),
    [
        ("normal", (1.5, 2.0, 2.5, 3.5)),
        ("low", (1.0, 1.2, 1.5, 2.0)),
        ("critical", (0.25, 0.5, 1.0, 1.5)),
    ],
)
def test_thresholds_are_monotonic_in_each_coefficient(field: str, coefficients) -> None:
    cmm = Decimal("8.6")
    previous = None
    for coefficient in coefficients:
        thresholds = thresholds_from_cmm(cmm, AlertConfig(**{field: coefficient}))
        value = getattr(thresholds, field)
        if previous is not None:
            assert value >= previous
        previous = value


@pytest.mark.parametrize("cmm", ["0", "0.3", "1", "4.2", "8.6", "37.5"])
def test_default_bands_are_ordered(cmm: str) -> None:
    thresholds = thresholds_from_cmm(Decimal(cmm), AlertConfig())

    assert thresholds.critical <= thresholds.low <= thresholds.normal


def test_stock_status_boundaries() -> None:
    thresholds = Thresholds(critical=9, low=13, normal=18, is_dynamic=True)

    assert stock_status(8, thresholds) == "critical"
    assert stock_status(9, thresholds) == "low"
    assert stock_status(13, thresholds) == "low"
    assert stock_status(14, thresholds) == "normal"
    assert stock_status(0, thresholds) == "critical"


def test_config_rejects_unordered_static_thresholds() -> None:
    with pytest.raises(ValidationError):
        AlertConfig(static_normal=10, static_low=12, static_critical=5)


def test_config_rejects_unordered_coefficients() -> None:
    with pytest.raises(ValidationError):
        AlertConfig(normal=1.0, low=3.0)
    with pytest.raises(ValidationError):
        AlertConfig(critical=1.8)

    assert AlertConfig(normal=1.5, low=1.5, critical=1.5).low == 1.5


@pytest.mark.parametrize(
    ("expiry", "expected"),
    [
        (None, None),
        (dt.date(2024, 6, 14), "expired"),
        (dt.date(2024, 6, 15), "critical"),
        (dt.date(2024, 7, 14), "critical"),
        (dt.date(2024, 7, 15), "warning"),
        (dt.date(2024, 9, 15), "warning"),
        (dt.date(2024, 10, 15), "notice"),
        (dt.date(2024, 12, 15), "notice"),
        (dt.date(2025, 1, 15), "ok"),
    ],
)
def test_expiration_status_bands(expiry, expected) -> None:
    assert expiration_status(expiry, today=dt.date(2024, 6, 15)) == expected


def test_expiration_status_counts_month_end_as_whole_month() -> None:
    assert expiration_status(dt.date(2024, 2, 29), today=dt.date(2024, 1, 31)) == "warning"
