import datetime as dt
import sys
import uuid
from pathlib import Path

import pytest

# Ensure the package is importable when running tests from the repo root
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from anesth_api import models  # noqa: E402
from anesth_api.models import TxCategory, TxStatus, TxType  # noqa: E402

NOW = dt.datetime(2024, 6, 15, 10, 0, 0)


def make_medication(
    name: str,
    stock: int = 0,
    *,
    is_narcotic: bool = False,
    expiry: dt.date | None = None,
    created_at: dt.datetime | None = None,
) -> models.Medication:
    created_at = created_at or NOW - dt.timedelta(days=365)
    return models.Medication(
        id=uuid.uuid4(),
        name=name,
        stock=stock,
        is_narcotic=is_narcotic,
        expiry=expiry,
        created_at=created_at,
        updated_at=created_at,
    )


def make_transaction(
    med: models.Medication,
    quantity: int,
    date: dt.datetime,
    *,
    tx_type: str = TxType.OUT.value,
    status: str = TxStatus.VALIDATED.value,
    category: str = TxCategory.NORMAL.value,
    batch_id: uuid.UUID | None = None,
    details: dict | None = None,
) -> models.Transaction:
    return models.Transaction(
        id=uuid.uuid4(),
        med_id=med.id,
        med_name=med.name,
        type=tx_type,
        quantity=quantity,
        date=date,
        status=status,
        category=category,
        batch_id=batch_id,
        details=details or {},
    )


def make_user(username: str = "dupont", role: str = models.Role.ANESTHETIST.value) -> models.User:
    return models.User(
        id=uuid.uuid4(),
        username=username,
        full_name=f"Dr {username.capitalize()}",
        password_hash="hashed-password",
        role=role,
        active=True,
        created_at=NOW - dt.timedelta(days=30),
    )


class FakeLedgerStore:
    """In-memory stand-in for :class:`anesth_api.store.LedgerStore`.

    ``commit`` takes a snapshot and ``rollback`` restores it, so tests can
    check that a failed batch leaves nothing behind.
    """

    def __init__(self, medications=(), transactions=(), users=()):
        self.medications = {med.id: med for med in medications}
        self.transactions = list(transactions)
        self.users = {user.id: user for user in users}
        self.audits: list[models.InventoryAudit] = []
        self.settings: dict = {}
        self.activity: list[models.ActivityLog] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on_adjust: uuid.UUID | None = None
        self._snapshot()

    def _snapshot(self) -> None:
        self._saved = {
            "medications": {med_id: (med, med.stock, med.expiry) for med_id, med in self.medications.items()},
            "transactions": [(tx, tx.status) for tx in self.transactions],
            "audits": list(self.audits),
            "settings": dict(self.settings),
            "activity": list(self.activity),
        }

    # catalog

    async def list_medications(self):
        return sorted(self.medications.values(), key=lambda med: med.name)

    async def get_medication(self, med_id):
        return self.medications.get(med_id)

    async def add_medication(self, medication):
        self.medications[medication.id] = medication
        return medication

    async def update_medication(self, med_id, fields):
        med = self.medications[med_id]
        for key, value in fields.items():
            setattr(med, key, value)
        med.updated_at = dt.datetime.utcnow()

    async def adjust_stock(self, med_id, delta, *, expiry=None):
        if self.fail_on_adjust == med_id:
            raise RuntimeError("connexion perdue")
        med = self.medications.get(med_id)
        if med is None:
            return None
        if delta < 0 and med.stock < -delta:
            return None
        med.stock += delta
        if expiry is not None:
            med.expiry = expiry
        return med.stock

    # ledger

    async def list_transactions(
        self,
        *,
        med_id=None,
        status=None,
        tx_type=None,
        category=None,
        batch_id=None,
        since=None,
        limit=None,
    ):
        rows = [
            tx
            for tx in self.transactions
            if (med_id is None or tx.med_id == med_id)
            and (status is None or tx.status == status)
            and (tx_type is None or tx.type == tx_type)
            and (category is None or tx.category == category)
            and (batch_id is None or tx.batch_id == batch_id)
            and (since is None or tx.date >= since)
        ]
        rows.sort(key=lambda tx: tx.date, reverse=True)
        return rows[:limit] if limit is not None else rows

    async def get_transaction(self, tx_id):
        return next((tx for tx in self.transactions if tx.id == tx_id), None)

    async def insert_transactions(self, transactions):
        self.transactions.extend(transactions)

    async def set_transaction_status(self, tx_ids, status, *, expected=TxStatus.PENDING.value):
        ids = set(tx_ids)
        changed = []
        for tx in self.transactions:
            if tx.id in ids and tx.status == expected:
                tx.status = status
                changed.append(tx.id)
        return changed

    # audits

    async def latest_audit(self):
        return max(self.audits, key=lambda audit: audit.created_at, default=None)

    async def insert_audit(self, header, items):
        header.items.extend(items)
        self.audits.append(header)
        return header

    async def list_audits(self, limit=50):
        return sorted(self.audits, key=lambda audit: audit.created_at, reverse=True)[:limit]

    async def get_audit(self, audit_id):
        return next((audit for audit in self.audits if audit.id == audit_id), None)

    # users, settings, activity

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_user_by_username(self, username):
        return next((user for user in self.users.values() if user.username == username), None)

    async def get_setting(self, key):
        return self.settings.get(key)

    async def put_setting(self, key, value):
        self.settings[key] = value

    async def log_activity(self, entity, entity_id, action, payload, user_id=None):
        self.activity.append(
            models.ActivityLog(
                id=uuid.uuid4(),
                entity=entity,
                entity_id=entity_id,
                action=action,
                payload_json=payload,
                user_id=user_id,
                ts=dt.datetime.utcnow(),
            )
        )

    async def list_activity(self, limit=100):
        return list(reversed(self.activity))[:limit]

    async def commit(self):
        self.commits += 1
        self._snapshot()

    async def rollback(self):
        self.rollbacks += 1
        saved = self._saved
        self.medications = {}
        for med_id, (med, stock, expiry) in saved["medications"].items():
            med.stock = stock
            med.expiry = expiry
            self.medications[med_id] = med
        self.transactions = []
        for tx, status in saved["transactions"]:
            tx.status = status
            self.transactions.append(tx)
        self.audits = list(saved["audits"])
        self.settings = dict(saved["settings"])
        self.activity = list(saved["activity"])


@pytest.fixture()
def store() -> FakeLedgerStore:
    return FakeLedgerStore()
