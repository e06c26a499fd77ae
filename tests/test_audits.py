import asyncio
import datetime as dt
import types

import pytest

from anesth_api import audits
from anesth_api.errors import NotFoundError, StockValidationError
from anesth_api.models import TxCategory, TxStatus
from conftest import NOW, FakeLedgerStore, make_medication, make_transaction


def _count(med, physical, comment="", empty=None):
    return types.SimpleNamespace(med_id=med.id, physical_stock=physical, comment=comment, physical_empty_vials=empty)


def test_start_audit_snapshots_stock() -> None:
    propofol = make_medication("Propofol", 30)
    draft = audits.start_audit([propofol], [], now=NOW)

    line = draft.line(propofol.id)
    assert line.theoretical_stock == line.physical_stock == 30
    assert line.gap == 0
    assert line.expected_empty_vials is None
    assert draft.since == NOW - dt.timedelta(days=audits.EMPTY_VIAL_LOOKBACK_DAYS)


def test_gap_and_discrepancy_count() -> None:
    propofol = make_medication("Propofol", 30)
    atropine = make_medication("Atropine", 12)
    draft = audits.start_audit([propofol, atropine], [], now=NOW)

    draft.set_physical(propofol.id, 27)

    assert draft.line(propofol.id).gap == -3
    assert draft.discrepancy_count == 1
    assert draft.total_items == 2
    assert [line.med_name for line in draft.discrepancies] == ["Propofol"]


def test_expected_empty_vials_counts_patient_exits_since_previous_audit() -> None:
    fentanyl = make_medication("Fentanyl", 20, is_narcotic=True)
    previous = NOW - dt.timedelta(days=10)
    transactions = [
        make_transaction(fentanyl, 4, NOW - dt.timedelta(days=2)),
        make_transaction(fentanyl, 3, NOW - dt.timedelta(days=9)),
        make_transaction(fentanyl, 5, NOW - dt.timedelta(days=12)),
        make_transaction(fentanyl, 2, NOW - dt.timedelta(days=1), category=TxCategory.INCIDENT.value),
        make_transaction(fentanyl, 6, NOW - dt.timedelta(days=1), status=TxStatus.REJECTED.value),
    ]

    draft = audits.start_audit([fentanyl], transactions, previous_audit_at=previous, now=NOW)

    assert draft.line(fentanyl.id).expected_empty_vials == 7


def test_empty_vials_distinguish_not_counted_from_zero() -> None:
    fentanyl = make_medication("Fentanyl", 20, is_narcotic=True)
    draft = audits.start_audit([fentanyl], [make_transaction(fentanyl, 2, NOW - dt.timedelta(days=1))], now=NOW)
    line = draft.line(fentanyl.id)

    assert line.physical_empty_vials is None
    assert line.empty_vial_gap is None

    draft.set_empty_vials(fentanyl.id, 0)
    assert line.physical_empty_vials == 0
    assert line.empty_vial_gap == -2

    draft.set_empty_vials(fentanyl.id, None)
    assert line.physical_empty_vials is None


def test_draft_edits_are_validated() -> None:
    propofol = make_medication("Propofol", 30)
    draft = audits.start_audit([propofol], [], now=NOW)

    with pytest.raises(StockValidationError):
        draft.set_physical(propofol.id, -1)
    with pytest.raises(StockValidationError):
        draft.set_empty_vials(propofol.id, 2)
    with pytest.raises(NotFoundError):
        draft.set_comment(make_medication("Inconnu").id, "absent")


def test_save_audit_never_touches_stock() -> None:
    propofol = make_medication("Propofol", 30)
    store = FakeLedgerStore(medications=[propofol])

    draft = asyncio.run(audits.draft_from_counts(store, [_count(propofol, 27, "2 flacons cassés")], now=NOW))
    audit = asyncio.run(audits.save_audit(store, draft, now=NOW))

    assert audit.total_items == 1
    assert audit.discrepancy_count == 1
    assert audit.status == "COMPLETED"
    assert audit.items[0].gap == -3
    assert audit.items[0].comment == "2 flacons cassés"
    assert propofol.stock == 30
    assert store.audits == [audit]
    assert store.activity[-1].action == "completed"


def test_begin_audit_starts_from_latest_audit() -> None:
    fentanyl = make_medication("Fentanyl", 20, is_narcotic=True)
    store = FakeLedgerStore(
        medications=[fentanyl],
        transactions=[
            make_transaction(fentanyl, 4, NOW - dt.timedelta(days=20)),
            make_transaction(fentanyl, 1, NOW - dt.timedelta(days=2)),
        ],
    )
    earlier = NOW - dt.timedelta(days=5)
    first = asyncio.run(audits.save_audit(store, asyncio.run(audits.begin_audit(store, earlier)), now=earlier))

    draft = asyncio.run(audits.begin_audit(store, NOW))

    assert draft.since == first.created_at
    assert draft.line(fentanyl.id).expected_empty_vials == 1


def test_counts_re_snapshot_theoretical_stock() -> None:
    propofol = make_medication("Propofol", 30)
    store = FakeLedgerStore(medications=[propofol])
    propofol.stock = 32

    draft = asyncio.run(audits.draft_from_counts(store, [_count(propofol, 32)], now=NOW))

    assert draft.line(propofol.id).theoretical_stock == 32
    assert draft.discrepancy_count == 0


def test_empty_catalog_cannot_be_saved() -> None:
    store = FakeLedgerStore()
    draft = asyncio.run(audits.begin_audit(store, NOW))

    with pytest.raises(StockValidationError):
        asyncio.run(audits.save_audit(store, draft))
