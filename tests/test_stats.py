import datetime as dt
import uuid

from anesth_api.alerts import AlertConfig
from anesth_api.models import TxCategory, TxStatus, TxType
from anesth_api.stats import consumption_statistics, consumption_table, dashboard_summary
from conftest import NOW, make_medication, make_transaction


def test_dashboard_summary_classifies_stock_and_counts_pending_work() -> None:
    atropine = make_medication("Atropine", 3)
    ephedrine = make_medication("Ephedrine", 8)
    propofol = make_medication("Propofol", 50, expiry=(NOW + dt.timedelta(days=20)).date())
    batch = uuid.uuid4()
    transactions = [
        make_transaction(propofol, 10, NOW - dt.timedelta(hours=3), tx_type=TxType.IN.value,
                         status=TxStatus.PENDING.value, batch_id=batch),
        make_transaction(atropine, 10, NOW - dt.timedelta(hours=3), tx_type=TxType.IN.value,
                         status=TxStatus.PENDING.value, batch_id=batch),
        make_transaction(ephedrine, 1, NOW - dt.timedelta(hours=1), status=TxStatus.PENDING.value,
                         category=TxCategory.INCIDENT.value),
    ]

    summary = dashboard_summary([atropine, ephedrine, propofol], transactions, AlertConfig(), NOW, recent=2)

    assert summary.total_references == 3
    assert summary.total_units == 61
    assert [state.medication.name for state in summary.critical] == ["Atropine"]
    assert [state.medication.name for state in summary.low] == ["Ephedrine"]
    assert [state.medication.name for state in summary.expiring] == ["Propofol"]
    assert summary.pending_receptions == 1
    assert summary.pending_incidents == 1
    assert len(summary.recent) == 2
    assert summary.recent[0].category == TxCategory.INCIDENT.value


def test_consumption_table_is_sorted_by_name() -> None:
    sufentanil = make_medication("sufentanil", 20)
    atropine = make_medication("Atropine", 20)
    transactions = [make_transaction(sufentanil, 6, dt.datetime(2024, 6, 1))]

    rows = consumption_table([sufentanil, atropine], transactions, AlertConfig(), NOW)

    assert [row.name for row in rows] == ["Atropine", "sufentanil"]
    assert rows[1].cmm == 3.0
    assert rows[1].thresholds.is_dynamic
    assert rows[0].trend == "stable"


def test_consumption_statistics_over_window() -> None:
    propofol = make_medication("Propofol", 20)
    midazolam = make_medication("Midazolam", 20)
    first, second = uuid.uuid4(), uuid.uuid4()
    transactions = [
        make_transaction(propofol, 2, NOW - dt.timedelta(days=1), batch_id=first,
                         details={"intervention": "Orthopédie"}),
        make_transaction(midazolam, 1, NOW - dt.timedelta(days=1), batch_id=first,
                         details={"intervention": "Orthopédie"}),
        make_transaction(propofol, 3, NOW - dt.timedelta(days=3), batch_id=second),
        make_transaction(propofol, 9, NOW - dt.timedelta(days=40), batch_id=uuid.uuid4()),
        make_transaction(propofol, 4, NOW - dt.timedelta(days=2), category=TxCategory.INCIDENT.value),
    ]

    stats = consumption_statistics(transactions, days=30, now=NOW)

    assert stats.total_units == 6
    assert stats.total_interventions == 2
    assert stats.top_consumed == [("Propofol", 5), ("Midazolam", 1)]
    assert stats.interventions == [("Autre", 1), ("Orthopédie", 1)]
    assert len(stats.daily) == 31
    assert stats.daily[-1] == (NOW.date(), 0)
    assert dict(stats.daily)[(NOW - dt.timedelta(days=1)).date()] == 3
