"""Persistence for the medication catalog, the ledger and audit snapshots.

The store holds no business rules. Stock changes are issued as SQL
expressions so the database applies them to the current row value, and
status changes are conditional on the expected current status.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import models
from .errors import PartialApplicationError, StockError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def applying(store: Any, operation: str) -> AsyncIterator[None]:
    """Run writes for ``operation``; roll back on any failure.

    Domain errors are re-raised as they are. Anything else becomes a
    :class:`PartialApplicationError` carrying an operator-readable message.
    """

    try:
        yield
    except StockError:
        await store.rollback()
        raise
    except Exception as exc:
        await store.rollback()
        logger.exception("%s interrupted, session rolled back", operation)
        raise PartialApplicationError(
            f"{operation} interrompue ({exc}). Vérifiez le stock avant de réessayer."
        ) from exc


class LedgerStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # -- catalog -------------------------------------------------------

    async def list_medications(self) -> list[models.Medication]:
        result = await self.session.execute(
            select(models.Medication)
            .order_by(models.Medication.name.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_medication(self, med_id: uuid.UUID) -> Optional[models.Medication]:
        result = await self.session.execute(
            select(models.Medication).where(models.Medication.id == med_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add_medication(self, medication: models.Medication) -> models.Medication:
        self.session.add(medication)
        await self.session.flush()
        return medication

    async def update_medication(self, med_id: uuid.UUID, fields: dict[str, Any]) -> None:
        values = dict(fields)
        values["updated_at"] = dt.datetime.utcnow()
        await self.session.execute(
            update(models.Medication).where(models.Medication.id == med_id).values(**values)
        )

    async def adjust_stock(
        self,
        med_id: uuid.UUID,
        delta: int,
        *,
        expiry: dt.date | None = None,
    ) -> Optional[int]:
        """Apply ``delta`` to the stored stock; return the new value.

        Returns ``None`` when the row is missing or when a decrement would
        take the stock below zero (nothing is written in that case).
        """

        values: dict[str, Any] = {
            "stock": models.Medication.stock + delta,
            "updated_at": dt.datetime.utcnow(),
        }
        if expiry is not None:
            values["expiry"] = expiry
        stmt = update(models.Medication).where(models.Medication.id == med_id)
        if delta < 0:
            stmt = stmt.where(models.Medication.stock >= -delta)
        result = await self.session.execute(
            stmt.values(**values).returning(models.Medication.stock).execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    # -- ledger --------------------------------------------------------

    async def list_transactions(
        self,
        *,
        med_id: uuid.UUID | None = None,
        status: str | None = None,
        tx_type: str | None = None,
        category: str | None = None,
        batch_id: uuid.UUID | None = None,
        since: dt.datetime | None = None,
        limit: int | None = None,
    ) -> list[models.Transaction]:
        query = select(models.Transaction)
        if med_id is not None:
            query = query.where(models.Transaction.med_id == med_id)
        if status is not None:
            query = query.where(models.Transaction.status == status)
        if tx_type is not None:
            query = query.where(models.Transaction.type == tx_type)
        if category is not None:
            query = query.where(models.Transaction.category == category)
        if batch_id is not None:
            query = query.where(models.Transaction.batch_id == batch_id)
        if since is not None:
            query = query.where(models.Transaction.date >= since)
        query = query.order_by(models.Transaction.date.desc(), models.Transaction.id.asc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_transaction(self, tx_id: uuid.UUID) -> Optional[models.Transaction]:
        result = await self.session.execute(
            select(models.Transaction)
            .where(models.Transaction.id == tx_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert_transactions(self, transactions: Iterable[models.Transaction]) -> None:
        self.session.add_all(list(transactions))
        await self.session.flush()

    async def set_transaction_status(
        self,
        tx_ids: Iterable[uuid.UUID],
        status: str,
        *,
        expected: str = models.TxStatus.PENDING.value,
    ) -> list[uuid.UUID]:
        """Move rows from ``expected`` to ``status``; return the ids that changed."""

        ids = list(tx_ids)
        if not ids:
            return []
        result = await self.session.execute(
            update(models.Transaction)
            .where(models.Transaction.id.in_(ids), models.Transaction.status == expected)
            .values(status=status)
            .returning(models.Transaction.id)
            .execution_options(synchronize_session=False)
        )
        return list(result.scalars().all())

    # -- inventory audits ----------------------------------------------

    async def latest_audit(self) -> Optional[models.InventoryAudit]:
        result = await self.session.execute(
            select(models.InventoryAudit).order_by(models.InventoryAudit.created_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def insert_audit(
        self,
        header: models.InventoryAudit,
        items: Iterable[models.InventoryAuditItem],
    ) -> models.InventoryAudit:
        header.items.extend(items)
        self.session.add(header)
        await self.session.flush()
        return header

    async def list_audits(self, limit: int = 50) -> list[models.InventoryAudit]:
        result = await self.session.execute(
            select(models.InventoryAudit).order_by(models.InventoryAudit.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get_audit(self, audit_id: uuid.UUID) -> Optional[models.InventoryAudit]:
        result = await self.session.execute(
            select(models.InventoryAudit)
            .where(models.InventoryAudit.id == audit_id)
            .options(selectinload(models.InventoryAudit.items))
        )
        return result.scalar_one_or_none()

    async def get_user(self, user_id: uuid.UUID | None) -> Optional[models.User]:
        if user_id is None:
            return None
        return await self.session.get(models.User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[models.User]:
        result = await self.session.execute(select(models.User).where(models.User.username == username))
        return result.scalar_one_or_none()

    # -- settings & activity -------------------------------------------

    async def get_setting(self, key: str) -> Any:
        result = await self.session.execute(select(models.Setting).where(models.Setting.key == key))
        row = result.scalar_one_or_none()
        return None if row is None else row.value

    async def put_setting(self, key: str, value: Any) -> None:
        row = await self.session.get(models.Setting, key)
        if row is None:
            self.session.add(models.Setting(key=key, value=value, updated_at=dt.datetime.utcnow()))
        else:
            row.value = value
            row.updated_at = dt.datetime.utcnow()
        await self.session.flush()

    async def log_activity(
        self,
        entity: str,
        entity_id: str,
        action: str,
        payload: dict[str, Any],
        user_id: uuid.UUID | None = None,
    ) -> None:
        self.session.add(
            models.ActivityLog(
                entity=entity,
                entity_id=entity_id,
                action=action,
                payload_json=payload,
                user_id=user_id,
                ts=dt.datetime.utcnow(),
            )
        )

    async def list_activity(self, limit: int = 100) -> list[models.ActivityLog]:
        result = await self.session.execute(
            select(models.ActivityLog).order_by(models.ActivityLog.ts.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
