"""Response builders shared by several routers."""

from __future__ import annotations

from typing import Any

from .. import models, schemas
from ..alerts import Thresholds
from ..workflow import BatchOutcome, BatchSummary


def build_thresholds(thresholds: Thresholds) -> schemas.ThresholdsOut:
    return schemas.ThresholdsOut(
        critical=thresholds.critical,
        low=thresholds.low,
        normal=thresholds.normal,
        is_dynamic=thresholds.is_dynamic,
        cmm=round(thresholds.cmm, 2),
    )


def build_transaction(tx: models.Transaction) -> schemas.TransactionOut:
    return schemas.TransactionOut(
        id=tx.id,
        med_id=tx.med_id,
        med_name=tx.med_name,
        type=tx.type,
        quantity=tx.quantity,
        date=tx.date,
        status=tx.status,
        category=tx.category,
        batch_id=tx.batch_id,
        details=tx.details or {},
    )


def build_batch(summary: BatchSummary) -> schemas.BatchOut:
    return schemas.BatchOut(
        batch_id=summary.batch_id,
        date=summary.date,
        status=summary.status,
        details=summary.details,
        items=[build_transaction(tx) for tx in summary.items],
    )


def build_batch_result(outcome: BatchOutcome) -> schemas.BatchResult:
    return schemas.BatchResult(batch_id=outcome.batch_id, lines=outcome.lines, stock=outcome.stock)


def build_audit_line(line: Any) -> schemas.AuditLineOut:
    return schemas.AuditLineOut(
        med_id=line.med_id,
        med_name=line.med_name,
        is_narcotic=line.is_narcotic,
        theoretical_stock=line.theoretical_stock,
        physical_stock=line.physical_stock,
        gap=line.gap,
        comment=line.comment or "",
        expected_empty_vials=line.expected_empty_vials,
        physical_empty_vials=line.physical_empty_vials,
    )
