import datetime as dt
from decimal import Decimal

from anesth_api.consumption import (
    MonthlyConsumption,
    consumption_trend,
    history_start,
    monthly_consumption,
    weighted_cmm,
)
from anesth_api.models import TxCategory, TxStatus, TxType
from conftest import NOW, make_medication, make_transaction


def _months(*quantities: int) -> list[MonthlyConsumption]:
    return [MonthlyConsumption(month=dt.date(2024, 6 - i, 1), quantity=q, count=1) for i, q in enumerate(quantities)]


def test_monthly_consumption_buckets_validated_exits_newest_first() -> None:
    fentanyl = make_medication("Fentanyl", 50, is_narcotic=True)
    other = make_medication("Propofol", 20)
    transactions = [
        make_transaction(fentanyl, 4, dt.datetime(2024, 6, 2, 8)),
        make_transaction(fentanyl, 6, dt.datetime(2024, 6, 14, 22)),
        make_transaction(fentanyl, 8, dt.datetime(2024, 5, 31, 23, 59)),
        make_transaction(fentanyl, 6, dt.datetime(2024, 4, 1, 0, 0)),
        # outside the window
        make_transaction(fentanyl, 100, dt.datetime(2024, 3, 31, 23, 0)),
        # not consumption
        make_transaction(fentanyl, 30, dt.datetime(2024, 6, 3), tx_type=TxType.IN.value),
        make_transaction(fentanyl, 2, dt.datetime(2024, 6, 3), status=TxStatus.PENDING.value,
                         category=TxCategory.INCIDENT.value),
        make_transaction(fentanyl, 9, dt.datetime(2024, 6, 3), status=TxStatus.REJECTED.value),
        make_transaction(other, 7, dt.datetime(2024, 6, 3)),
    ]

    history = monthly_consumption(fentanyl.id, transactions, now=NOW)

    assert [item.month for item in history] == [dt.date(2024, 6, 1), dt.date(2024, 5, 1), dt.date(2024, 4, 1)]
    assert [item.quantity for item in history] == [10, 8, 6]
    assert [item.count for item in history] == [2, 1, 1]


def test_monthly_consumption_counts_validated_incidents() -> None:
    med = make_medication("Ketamine", 10)
    transactions = [
        make_transaction(med, 3, dt.datetime(2024, 6, 3), category=TxCategory.INCIDENT.value),
    ]

    assert monthly_consumption(med.id, transactions, now=NOW)[0].quantity == 3


def test_monthly_consumption_crosses_year_boundary() -> None:
    med = make_medication("Ephedrine", 10)
    transactions = [make_transaction(med, 5, dt.datetime(2023, 12, 20))]

    history = monthly_consumption(med.id, transactions, now=dt.datetime(2024, 1, 10))

    assert [item.month for item in history] == [dt.date(2024, 1, 1), dt.date(2023, 12, 1), dt.date(2023, 11, 1)]
    assert history[1].quantity == 5


def test_monthly_consumption_with_no_history_is_all_zero() -> None:
    history = monthly_consumption("unknown", [], n=4, now=NOW)

    assert len(history) == 4
    assert all(item.quantity == 0 and item.count == 0 for item in history)


def test_weighted_cmm_uses_half_three_tenths_two_tenths() -> None:
    assert weighted_cmm(_months(10, 8, 6)) == Decimal("8.6")
    assert weighted_cmm(_months(0, 0, 0)) == 0


def test_weighted_cmm_ignores_months_beyond_the_third() -> None:
    assert weighted_cmm(_months(10, 8, 6, 1000)) == Decimal("8.6")


def test_trend_compares_current_month_to_previous_average() -> None:
    increasing = consumption_trend(_months(10, 8, 6))
    assert increasing.trend == "increasing"
    assert increasing.percentage == 43

    decreasing = consumption_trend(_months(5, 10, 10))
    assert decreasing.trend == "decreasing"
    assert decreasing.percentage == -50

    stable = consumption_trend(_months(11, 10, 10))
    assert stable.trend == "stable"
    assert stable.percentage == 10


def test_trend_rounds_halves_upwards() -> None:
    assert consumption_trend(_months(9, 8, 8)).percentage == 13
    assert consumption_trend(_months(7, 8, 8)).percentage == -12


def test_trend_without_baseline() -> None:
    assert consumption_trend(_months(12, 0, 0)).trend == "stable"
    assert consumption_trend(_months(12, 0, 0)).percentage == 0
    assert consumption_trend(_months(12)).trend == "unknown"


def test_history_start_is_first_day_of_oldest_month() -> None:
    assert history_start(NOW) == dt.datetime(2024, 4, 1)
    assert history_start(dt.datetime(2024, 2, 29, 12), 3) == dt.datetime(2023, 12, 1)
