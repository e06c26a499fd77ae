"""Routers for physical inventory audits."""

import uuid

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse

from .. import audits, models, reports, schemas
from ..auth import get_current_user
from ..deps import get_store
from ..errors import api_error
from ..models import Role
from ..rbac import require_role
from ..store import LedgerStore
from .common import build_audit_line

router = APIRouter()


def _build_audit(audit: models.InventoryAudit, *, with_items: bool = True) -> schemas.AuditOut:
    return schemas.AuditOut(
        id=audit.id,
        user_id=audit.user_id,
        status=audit.status,
        total_items=audit.total_items,
        discrepancy_count=audit.discrepancy_count,
        created_at=audit.created_at,
        items=[build_audit_line(item) for item in audit.items] if with_items else [],
    )


def _build_draft(draft: audits.AuditDraft) -> schemas.AuditDraftOut:
    return schemas.AuditDraftOut(
        started_at=draft.started_at,
        since=draft.since,
        total_items=draft.total_items,
        discrepancy_count=draft.discrepancy_count,
        lines=[build_audit_line(line) for line in draft.lines],
    )


async def _get_audit(store: LedgerStore, audit_id: uuid.UUID) -> models.InventoryAudit:
    audit = await store.get_audit(audit_id)
    if audit is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "audit.not_found", "Inventaire introuvable")
    return audit


@router.get("/draft", response_model=schemas.AuditDraftOut)
async def start_audit(
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.AuditDraftOut:
    require_role(user, Role.ANESTHETIST, Role.PHARMACIST)
    return _build_draft(await audits.begin_audit(store))


@router.post("/", response_model=schemas.AuditOut, status_code=status.HTTP_201_CREATED)
async def save_audit(
    payload: schemas.AuditCreate,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.AuditOut:
    require_role(user, Role.ANESTHETIST, Role.PHARMACIST)
    draft = await audits.draft_from_counts(store, payload.counts)
    audit = await audits.save_audit(store, draft, user_id=user.id)
    return _build_audit(audit)


@router.get("/", response_model=list[schemas.AuditOut])
async def list_audits(
    limit: int = Query(50, ge=1, le=200),
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.AuditOut]:
    require_role(user)
    return [_build_audit(audit, with_items=False) for audit in await store.list_audits(limit)]


@router.get("/{audit_id}", response_model=schemas.AuditOut)
async def get_audit(
    audit_id: uuid.UUID,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.AuditOut:
    require_role(user)
    return _build_audit(await _get_audit(store, audit_id))


@router.get("/{audit_id}/report", response_class=PlainTextResponse)
async def audit_report(
    audit_id: uuid.UUID,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> PlainTextResponse:
    require_role(user)
    audit = await _get_audit(store, audit_id)
    auditor = await store.get_user(audit.user_id)
    name = (auditor.full_name or auditor.username) if auditor is not None else None
    return PlainTextResponse(reports.render_audit_report(audit, auditor=name))
