import datetime as dt
import logging
import uuid
from pathlib import Path
from typing import Any

import pandas as pd
from fastapi import APIRouter, Depends, status

from .. import models, schemas
from ..auth import get_current_user
from ..config import CATALOG_IMPORT_DIR
from ..deps import get_store
from ..errors import api_error
from ..models import Role
from ..rbac import require_role
from ..store import LedgerStore

logger = logging.getLogger(__name__)

router = APIRouter()

CATALOG_FILES = ("catalog.xlsx", "catalog.csv")
TRUE_VALUES = {"1", "true", "yes", "oui", "o", "x", "stupefiant", "stupéfiant"}


def _catalog_file() -> Path | None:
    for name in CATALOG_FILES:
        path = Path(CATALOG_IMPORT_DIR) / name
        if path.exists():
            return path
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_VALUES
    return bool(value)


def _as_date(value: Any) -> dt.date | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return pd.to_datetime(str(value), dayfirst=True).date()


def items_from_frame(df: pd.DataFrame) -> list[schemas.CatalogItem]:
    """Turn spreadsheet rows into catalog items; rows without a name are skipped."""

    df = df.rename(columns=lambda column: str(column).strip().lower())
    df = df.astype(object).where(pd.notnull(df), None)
    items: list[schemas.CatalogItem] = []
    for record in df.to_dict(orient="records"):
        name = record.get("name")
        if not name or not str(name).strip():
            continue
        payload: dict[str, Any] = {"name": str(name).strip()}
        if record.get("stock") is not None:
            payload["stock"] = int(record["stock"])
        if record.get("is_narcotic") is not None:
            payload["is_narcotic"] = _as_bool(record["is_narcotic"])
        if record.get("expiry") is not None:
            payload["expiry"] = _as_date(record["expiry"])
        items.append(schemas.CatalogItem(**payload))
    return items


async def _upsert_medications(
    store: LedgerStore, items: list[schemas.CatalogItem], user_id: uuid.UUID
) -> schemas.CatalogImportResult:
    existing = {med.name.strip().lower(): med for med in await store.list_medications()}
    created = updated = 0
    now = dt.datetime.utcnow()
    for item in items:
        fields = item.model_dump(exclude_unset=True, exclude_none=True)
        fields["name"] = item.name.strip()
        current = existing.get(fields["name"].lower())
        if current is None:
            values = {"stock": 0, "is_narcotic": False, **fields}
            medication = models.Medication(id=uuid.uuid4(), created_at=now, updated_at=now, **values)
            await store.add_medication(medication)
            existing[fields["name"].lower()] = medication
            created += 1
        else:
            fields.pop("name")
            if fields:
                await store.update_medication(current.id, fields)
            updated += 1
    await store.log_activity(
        "catalog", "import", "imported", {"created": created, "updated": updated}, user_id
    )
    await store.commit()
    logger.info("Catalog import: %s created, %s updated", created, updated)
    return schemas.CatalogImportResult(created=created, updated=updated)


@router.get("/probe", response_model=schemas.ProbeResponse)
async def probe() -> schemas.ProbeResponse:
    path = _catalog_file()
    if path is None:
        return schemas.ProbeResponse(available=False, path=str(Path(CATALOG_IMPORT_DIR) / CATALOG_FILES[0]))
    return schemas.ProbeResponse(available=True, path=str(path))


@router.post("/", response_model=schemas.CatalogImportResult)
async def import_payload(
    payload: schemas.CatalogImportRequest,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.CatalogImportResult:
    require_role(user, Role.PHARMACIST)
    if not payload.items:
        raise api_error(status.HTTP_400_BAD_REQUEST, "import.empty", "Aucun médicament à importer")
    return await _upsert_medications(store, payload.items, user.id)


@router.post("/from-local", response_model=schemas.CatalogImportResult)
async def import_from_local(
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.CatalogImportResult:
    require_role(user, Role.PHARMACIST)
    path = _catalog_file()
    if path is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "import.file_not_found", "Fichier introuvable")

    try:
        df = pd.read_csv(path) if path.suffix == ".csv" else pd.read_excel(path)
    except Exception as exc:  # pragma: no cover - depends on pandas engine
        raise api_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "import.read_failed", "Impossible de lire le fichier"
        ) from exc

    try:
        items = items_from_frame(df)
    except ValueError as exc:
        raise api_error(422, "import.invalid_row", f"Ligne invalide dans {path.name}: {exc}") from exc
    if not items:
        raise api_error(status.HTTP_400_BAD_REQUEST, "import.empty_file", "Le fichier ne contient aucune ligne valide")

    return await _upsert_medications(store, items, user.id)
