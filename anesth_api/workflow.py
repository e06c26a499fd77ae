"""Reception, exit and incident workflow over the transaction ledger.

Every stock-affecting event is a ledger line moving from ``PENDING`` to
``VALIDATED`` or ``REJECTED``; both are terminal. ``Medication.stock`` is
only changed when a line becomes ``VALIDATED``.

Batch operations are split in two steps. Planning is pure and raises before
anything is written. Applying runs inside
:func:`~anesth_api.store.applying`, which rolls the session back and raises
:class:`PartialApplicationError` when a write fails midway, so callers never
see a silently half-applied batch.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from . import models
from .errors import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PartialApplicationError,
    StockValidationError,
)
from .models import TxCategory, TxStatus, TxType
from .store import applying

logger = logging.getLogger(__name__)

INCIDENT_REASONS = ("BREAKAGE", "EXPIRED", "LOSS", "OTHER")


class IncidentAction(str, enum.Enum):
    VALIDATE = "VALIDATE"
    REJECT = "REJECT"


@dataclass(frozen=True)
class LineItem:
    med_id: uuid.UUID
    quantity: int
    expiry_date: Optional[dt.date] = None


@dataclass(frozen=True)
class ExitLine:
    med_id: uuid.UUID
    med_name: str
    quantity: int
    remaining: int


@dataclass(frozen=True)
class ExitPlan:
    lines: tuple[ExitLine, ...]
    details: dict[str, Any]


@dataclass
class BatchOutcome:
    batch_id: uuid.UUID
    lines: int = 0
    stock: dict[uuid.UUID, int] = field(default_factory=dict)


@dataclass
class BatchSummary:
    batch_id: Optional[uuid.UUID]
    date: dt.datetime
    status: str
    details: dict[str, Any]
    items: list[models.Transaction]


def _check_quantity(quantity: int, label: str) -> int:
    if quantity is None or int(quantity) <= 0:
        raise StockValidationError(f"{label}: la quantité doit être supérieure à zéro")
    return int(quantity)


def _parse_expiry(value: Any) -> Optional[dt.date]:
    if value in (None, ""):
        return None
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value))


def _json_details(details: Optional[dict[str, Any]]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in (details or {}).items():
        if value is None:
            continue
        cleaned[key] = value.isoformat() if isinstance(value, (dt.date, dt.datetime)) else value
    return cleaned


async def _batch_exists(store: Any, batch_id: uuid.UUID) -> bool:
    return bool(await store.list_transactions(batch_id=batch_id, limit=1))


# ---------- receptions ----------


async def add_stock_batch(
    store: Any,
    items: Sequence[LineItem],
    details: Optional[dict[str, Any]] = None,
    *,
    user_id: Optional[uuid.UUID] = None,
    now: Optional[dt.datetime] = None,
) -> uuid.UUID:
    """Record a delivery as PENDING lines sharing one batch id."""

    if not items:
        raise StockValidationError("La réception doit contenir au moins une ligne")
    medications = {med.id: med for med in await store.list_medications()}
    for index, item in enumerate(items, 1):
        if item.med_id not in medications:
            raise NotFoundError(f"Ligne {index}: médicament introuvable ({item.med_id})")
        _check_quantity(item.quantity, f"Ligne {index}")

    batch_id = uuid.uuid4()
    received_at = now or dt.datetime.utcnow()
    base_details = _json_details(details)
    transactions = [
        models.Transaction(
            id=uuid.uuid4(),
            med_id=item.med_id,
            med_name=medications[item.med_id].name,
            type=TxType.IN.value,
            quantity=int(item.quantity),
            date=received_at,
            status=TxStatus.PENDING.value,
            category=TxCategory.NORMAL.value,
            batch_id=batch_id,
            details={**base_details, **_json_details({"expiry_date": item.expiry_date})},
            created_by=user_id,
        )
        for item in items
    ]
    async with applying(store, "Enregistrement de la réception"):
        await store.insert_transactions(transactions)
        await store.log_activity(
            "reception",
            str(batch_id),
            "created",
            {"lines": len(transactions), "supplier": base_details.get("supplier")},
            user_id,
        )
        await store.commit()
    logger.info("Reception %s recorded with %d line(s)", batch_id, len(transactions))
    return batch_id


async def validate_reception(
    store: Any,
    batch_id: uuid.UUID,
    *,
    user_id: Optional[uuid.UUID] = None,
) -> BatchOutcome:
    """Credit stock for every pending line of a reception.

    A reception with no pending line left is a no-op (``lines == 0``), which
    makes a repeated validation harmless.
    """

    outcome = BatchOutcome(batch_id=batch_id)
    pending = await store.list_transactions(batch_id=batch_id, status=TxStatus.PENDING.value, tx_type=TxType.IN.value)
    if not pending:
        if not await _batch_exists(store, batch_id):
            raise NotFoundError(f"Réception introuvable: {batch_id}")
        logger.info("Reception %s has no pending line, nothing to validate", batch_id)
        return outcome

    async with applying(store, "Validation de la réception"):
        claimed = set(await store.set_transaction_status([tx.id for tx in pending], TxStatus.VALIDATED.value))
        deltas: dict[uuid.UUID, int] = {}
        expiries: dict[uuid.UUID, dt.date] = {}
        for tx in pending:
            if tx.id not in claimed:
                continue
            deltas[tx.med_id] = deltas.get(tx.med_id, 0) + int(tx.quantity)
            expiry = _parse_expiry((tx.details or {}).get("expiry_date"))
            if expiry is not None:
                expiries[tx.med_id] = expiry
            outcome.lines += 1
        for med_id, delta in deltas.items():
            new_stock = await store.adjust_stock(med_id, delta, expiry=expiries.get(med_id))
            if new_stock is None:
                raise NotFoundError(f"Médicament introuvable: {med_id}")
            outcome.stock[med_id] = new_stock
        await store.log_activity(
            "reception",
            str(batch_id),
            "validated",
            {"lines": outcome.lines, "stock": {str(k): v for k, v in outcome.stock.items()}},
            user_id,
        )
        await store.commit()
    logger.info("Reception %s validated (%d line(s))", batch_id, outcome.lines)
    return outcome


async def invalidate_reception(
    store: Any,
    batch_id: uuid.UUID,
    *,
    user_id: Optional[uuid.UUID] = None,
) -> BatchOutcome:
    """Reject a reception. Lines are kept in the ledger as REJECTED."""

    outcome = BatchOutcome(batch_id=batch_id)
    pending = await store.list_transactions(batch_id=batch_id, status=TxStatus.PENDING.value, tx_type=TxType.IN.value)
    if not pending:
        if not await _batch_exists(store, batch_id):
            raise NotFoundError(f"Réception introuvable: {batch_id}")
        return outcome

    async with applying(store, "Rejet de la réception"):
        rejected = await store.set_transaction_status([tx.id for tx in pending], TxStatus.REJECTED.value)
        outcome.lines = len(rejected)
        await store.log_activity("reception", str(batch_id), "rejected", {"lines": outcome.lines}, user_id)
        await store.commit()
    logger.info("Reception %s rejected (%d line(s))", batch_id, outcome.lines)
    return outcome


# ---------- patient exits ----------


def plan_stock_exit(
    items: Sequence[LineItem],
    medications: Iterable[models.Medication],
    details: Optional[dict[str, Any]] = None,
) -> ExitPlan:
    """Check a whole exit batch against running stock, without side effects."""

    details = details or {}
    if not items:
        raise StockValidationError("La sortie doit contenir au moins une ligne")
    initials = str(details.get("patient_initials") or "").strip()
    if not initials or details.get("patient_age") in (None, ""):
        raise StockValidationError("Veuillez remplir les informations patient.")

    catalog = {med.id: med for med in medications}
    remaining = {med_id: int(med.stock or 0) for med_id, med in catalog.items()}
    lines: list[ExitLine] = []
    for index, item in enumerate(items, 1):
        med = catalog.get(item.med_id)
        if med is None:
            raise NotFoundError(f"Médicament introuvable: {item.med_id}")
        quantity = _check_quantity(item.quantity, f"Ligne {index}")
        if remaining[item.med_id] < quantity:
            raise InsufficientStockError(med.name, quantity, remaining[item.med_id])
        remaining[item.med_id] -= quantity
        lines.append(ExitLine(med_id=med.id, med_name=med.name, quantity=quantity, remaining=remaining[med.id]))
    return ExitPlan(lines=tuple(lines), details=_json_details(details))


async def apply_exit_plan(
    store: Any,
    plan: ExitPlan,
    *,
    user_id: Optional[uuid.UUID] = None,
    now: Optional[dt.datetime] = None,
) -> BatchOutcome:
    outcome = BatchOutcome(batch_id=uuid.uuid4())
    exited_at = now or dt.datetime.utcnow()
    transactions = [
        models.Transaction(
            id=uuid.uuid4(),
            med_id=line.med_id,
            med_name=line.med_name,
            type=TxType.OUT.value,
            quantity=line.quantity,
            date=exited_at,
            status=TxStatus.VALIDATED.value,
            category=TxCategory.NORMAL.value,
            batch_id=outcome.batch_id,
            details=dict(plan.details),
            created_by=user_id,
        )
        for line in plan.lines
    ]
    async with applying(store, "Enregistrement de la sortie"):
        await store.insert_transactions(transactions)
        for line in plan.lines:
            new_stock = await store.adjust_stock(line.med_id, -line.quantity)
            if new_stock is None:
                raise PartialApplicationError(
                    f"Le stock de {line.med_name} a changé pendant l'enregistrement; la sortie a été annulée"
                )
            outcome.stock[line.med_id] = new_stock
            outcome.lines += 1
        await store.log_activity(
            "exit",
            str(outcome.batch_id),
            "created",
            {"lines": outcome.lines, "patient_initials": plan.details.get("patient_initials")},
            user_id,
        )
        await store.commit()
    logger.info("Exit %s recorded with %d line(s)", outcome.batch_id, outcome.lines)
    return outcome


async def remove_stock_batch(
    store: Any,
    items: Sequence[LineItem],
    details: Optional[dict[str, Any]] = None,
    *,
    user_id: Optional[uuid.UUID] = None,
    now: Optional[dt.datetime] = None,
) -> BatchOutcome:
    """Plan against freshly loaded stock, then apply."""

    plan = plan_stock_exit(items, await store.list_medications(), details)
    return await apply_exit_plan(store, plan, user_id=user_id, now=now)


# ---------- incidents ----------


async def report_incident(
    store: Any,
    med_id: uuid.UUID,
    quantity: int,
    reason: str,
    comment: str = "",
    *,
    user_id: Optional[uuid.UUID] = None,
    now: Optional[dt.datetime] = None,
) -> models.Transaction:
    quantity = _check_quantity(quantity, "Incident")
    if reason not in INCIDENT_REASONS:
        raise StockValidationError(f"Motif d'incident inconnu: {reason}")
    medication = await store.get_medication(med_id)
    if medication is None:
        raise NotFoundError(f"Médicament introuvable: {med_id}")

    incident = models.Transaction(
        id=uuid.uuid4(),
        med_id=medication.id,
        med_name=medication.name,
        type=TxType.OUT.value,
        quantity=quantity,
        date=now or dt.datetime.utcnow(),
        status=TxStatus.PENDING.value,
        category=TxCategory.INCIDENT.value,
        batch_id=None,
        details=_json_details({"reason": reason, "comment": comment or None}),
        created_by=user_id,
    )
    async with applying(store, "Déclaration de l'incident"):
        await store.insert_transactions([incident])
        await store.log_activity(
            "incident", str(incident.id), "reported", {"reason": reason, "quantity": quantity}, user_id
        )
        await store.commit()
    logger.info("Incident %s reported on %s (%d)", incident.id, medication.name, quantity)
    return incident


async def validate_incident(
    store: Any,
    tx_id: uuid.UUID,
    action: IncidentAction,
    *,
    user_id: Optional[uuid.UUID] = None,
) -> models.Transaction:
    """Resolve a pending incident.

    Validation refuses to take the stock below zero; the incident then stays
    pending so it can be rejected or validated after a reception.
    """

    incident = await store.get_transaction(tx_id)
    if incident is None:
        raise NotFoundError(f"Incident introuvable: {tx_id}")
    if incident.category != TxCategory.INCIDENT.value:
        raise InvalidTransitionError("Cette transaction n'est pas un incident")
    if incident.status != TxStatus.PENDING.value:
        raise InvalidTransitionError(f"L'incident a déjà été traité ({incident.status})")

    action = IncidentAction(action)
    if action is IncidentAction.VALIDATE:
        medication = await store.get_medication(incident.med_id)
        if medication is None:
            raise NotFoundError(f"Médicament introuvable: {incident.med_id}")
        if medication.stock < incident.quantity:
            logger.warning(
                "Incident %s would take %s below zero (stock %d, incident %d); refused",
                incident.id,
                medication.name,
                medication.stock,
                incident.quantity,
            )
            raise InsufficientStockError(incident.med_name, incident.quantity, medication.stock)

    target = TxStatus.VALIDATED if action is IncidentAction.VALIDATE else TxStatus.REJECTED
    async with applying(store, "Traitement de l'incident"):
        if not await store.set_transaction_status([incident.id], target.value):
            raise InvalidTransitionError("L'incident a déjà été traité")
        if action is IncidentAction.VALIDATE:
            new_stock = await store.adjust_stock(incident.med_id, -int(incident.quantity))
            if new_stock is None:
                raise InsufficientStockError(incident.med_name, incident.quantity, 0)
        await store.log_activity("incident", str(incident.id), target.value.lower(), {}, user_id)
        await store.commit()
    logger.info("Incident %s %s", incident.id, target.value.lower())
    return await store.get_transaction(tx_id)


# ---------- history ----------


def batch_status(items: Sequence[models.Transaction]) -> str:
    statuses = {tx.status for tx in items}
    return statuses.pop() if len(statuses) == 1 else "MIXED"


def group_batches(transactions: Iterable[models.Transaction], *, oldest_first: bool = False) -> list[BatchSummary]:
    """Group ledger lines by batch id; lines without one stand alone."""

    groups: dict[Any, list[models.Transaction]] = {}
    for tx in transactions:
        key = tx.batch_id if tx.batch_id is not None else ("single", tx.id)
        groups.setdefault(key, []).append(tx)
    summaries = [
        BatchSummary(
            batch_id=items[0].batch_id,
            date=min(tx.date for tx in items),
            status=batch_status(items),
            details={k: v for k, v in (items[0].details or {}).items() if k != "expiry_date"},
            items=items,
        )
        for items in groups.values()
    ]
    summaries.sort(key=lambda summary: summary.date, reverse=not oldest_first)
    return summaries


async def pending_receptions(store: Any) -> list[BatchSummary]:
    pending = await store.list_transactions(
        status=TxStatus.PENDING.value, tx_type=TxType.IN.value, category=TxCategory.NORMAL.value
    )
    # oldest first: validation queue order
    return group_batches(pending, oldest_first=True)


async def reception_history(store: Any, limit: int = 50) -> list[BatchSummary]:
    lines = await store.list_transactions(tx_type=TxType.IN.value)
    return group_batches(lines)[:limit]


async def exit_history(store: Any, limit: int = 50) -> list[BatchSummary]:
    lines = await store.list_transactions(
        tx_type=TxType.OUT.value, category=TxCategory.NORMAL.value, status=TxStatus.VALIDATED.value
    )
    return group_batches(lines)[:limit]


async def pending_incidents(store: Any) -> list[models.Transaction]:
    return await store.list_transactions(status=TxStatus.PENDING.value, category=TxCategory.INCIDENT.value)
