"""Physical inventory audits: snapshot, count, reconcile, persist.

An audit compares the stock recorded by the system (theoretical) with what
was physically counted. Narcotics additionally reconcile empty ampoules
against the exits recorded since the previous audit. A saved audit is a
read-only report; it never corrects ``Medication.stock``.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from . import models
from .errors import NotFoundError, StockValidationError
from .models import TxCategory, TxStatus, TxType
from .store import applying

logger = logging.getLogger(__name__)

EMPTY_VIAL_LOOKBACK_DAYS = 30


@dataclass
class AuditLine:
    med_id: uuid.UUID
    med_name: str
    is_narcotic: bool
    theoretical_stock: int
    physical_stock: int
    comment: str = ""
    expected_empty_vials: Optional[int] = None
    # None means "not counted yet", which is different from zero
    physical_empty_vials: Optional[int] = None

    @property
    def gap(self) -> int:
        return self.physical_stock - self.theoretical_stock

    @property
    def empty_vial_gap(self) -> Optional[int]:
        if self.expected_empty_vials is None or self.physical_empty_vials is None:
            return None
        return self.physical_empty_vials - self.expected_empty_vials


@dataclass
class AuditDraft:
    started_at: dt.datetime
    since: dt.datetime
    lines: list[AuditLine] = field(default_factory=list)

    def line(self, med_id: uuid.UUID) -> AuditLine:
        for line in self.lines:
            if line.med_id == med_id:
                return line
        raise NotFoundError(f"Médicament absent de l'inventaire: {med_id}")

    def set_physical(self, med_id: uuid.UUID, value: int) -> AuditLine:
        if value is None or int(value) < 0:
            raise StockValidationError("Le stock physique doit être un entier positif ou nul")
        line = self.line(med_id)
        line.physical_stock = int(value)
        return line

    def set_empty_vials(self, med_id: uuid.UUID, value: Optional[int]) -> AuditLine:
        line = self.line(med_id)
        if not line.is_narcotic:
            raise StockValidationError(f"{line.med_name} n'est pas un stupéfiant: pas de décompte d'ampoules vides")
        if value is not None and int(value) < 0:
            raise StockValidationError("Le nombre d'ampoules vides doit être positif ou nul")
        line.physical_empty_vials = None if value is None else int(value)
        return line

    def set_comment(self, med_id: uuid.UUID, comment: str) -> AuditLine:
        line = self.line(med_id)
        line.comment = comment or ""
        return line

    @property
    def total_items(self) -> int:
        return len(self.lines)

    @property
    def discrepancies(self) -> list[AuditLine]:
        return [line for line in self.lines if line.gap != 0]

    @property
    def discrepancy_count(self) -> int:
        return len(self.discrepancies)


def expected_empty_vials(med_id: Any, transactions: Iterable[Any], since: dt.datetime) -> int:
    """Ampoules used on patients since ``since``; incidents are not counted."""

    return sum(
        int(tx.quantity)
        for tx in transactions
        if tx.med_id == med_id
        and tx.type == TxType.OUT.value
        and tx.status == TxStatus.VALIDATED.value
        and tx.category == TxCategory.NORMAL.value
        and tx.date >= since
    )


def start_audit(
    medications: Iterable[models.Medication],
    transactions: Iterable[models.Transaction],
    previous_audit_at: Optional[dt.datetime] = None,
    now: Optional[dt.datetime] = None,
) -> AuditDraft:
    now = now or dt.datetime.utcnow()
    since = previous_audit_at or now - dt.timedelta(days=EMPTY_VIAL_LOOKBACK_DAYS)
    transactions = list(transactions)
    draft = AuditDraft(started_at=now, since=since)
    for med in medications:
        stock = int(med.stock or 0)
        draft.lines.append(
            AuditLine(
                med_id=med.id,
                med_name=med.name,
                is_narcotic=bool(med.is_narcotic),
                theoretical_stock=stock,
                physical_stock=stock,
                expected_empty_vials=expected_empty_vials(med.id, transactions, since) if med.is_narcotic else None,
            )
        )
    return draft


async def begin_audit(store: Any, now: Optional[dt.datetime] = None) -> AuditDraft:
    now = now or dt.datetime.utcnow()
    previous = await store.latest_audit()
    previous_at = previous.created_at if previous is not None else None
    since = previous_at or now - dt.timedelta(days=EMPTY_VIAL_LOOKBACK_DAYS)
    medications = await store.list_medications()
    transactions = await store.list_transactions(tx_type=TxType.OUT.value, since=since)
    return start_audit(medications, transactions, previous_at, now)


async def draft_from_counts(
    store: Any,
    counts: Iterable[Any],
    now: Optional[dt.datetime] = None,
) -> AuditDraft:
    """Rebuild a draft from submitted counts over a fresh stock snapshot.

    Each count carries ``med_id``, ``physical_stock`` and optionally
    ``comment`` and ``physical_empty_vials``. Medications without a count keep
    ``physical = theoretical``.
    """

    draft = await begin_audit(store, now)
    for count in counts:
        draft.set_physical(count.med_id, count.physical_stock)
        if count.comment:
            draft.set_comment(count.med_id, count.comment)
        if count.physical_empty_vials is not None:
            draft.set_empty_vials(count.med_id, count.physical_empty_vials)
    return draft


async def save_audit(
    store: Any,
    draft: AuditDraft,
    *,
    user_id: Optional[uuid.UUID] = None,
    now: Optional[dt.datetime] = None,
) -> models.InventoryAudit:
    if not draft.lines:
        raise StockValidationError("Aucun médicament à inventorier")
    header = models.InventoryAudit(
        id=uuid.uuid4(),
        user_id=user_id,
        status="COMPLETED",
        total_items=draft.total_items,
        discrepancy_count=draft.discrepancy_count,
        created_at=now or dt.datetime.utcnow(),
    )
    items = [
        models.InventoryAuditItem(
            id=uuid.uuid4(),
            med_id=line.med_id,
            med_name=line.med_name,
            is_narcotic=line.is_narcotic,
            theoretical_stock=line.theoretical_stock,
            physical_stock=line.physical_stock,
            gap=line.gap,
            comment=line.comment,
            expected_empty_vials=line.expected_empty_vials,
            physical_empty_vials=line.physical_empty_vials,
        )
        for line in draft.lines
    ]
    async with applying(store, "Enregistrement de l'inventaire"):
        await store.insert_audit(header, items)
        await store.log_activity(
            "inventory_audit",
            str(header.id),
            "completed",
            {"total_items": header.total_items, "discrepancy_count": header.discrepancy_count},
            user_id,
        )
        await store.commit()
    logger.info("Audit %s saved: %d item(s), %d discrepancy(ies)", header.id, header.total_items, header.discrepancy_count)
    return header
