from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..auth import get_current_user
from ..deps import get_store
from ..models import Role
from ..rbac import require_role
from ..store import LedgerStore

router = APIRouter()


@router.get("/", response_model=list[schemas.ActivityEntry])
async def list_activity(
    limit: int = Query(100, ge=1, le=500),
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> list[schemas.ActivityEntry]:
    require_role(user, Role.PHARMACIST)
    rows = await store.list_activity(limit)
    return [
        schemas.ActivityEntry(
            id=row.id,
            entity=row.entity,
            entity_id=row.entity_id,
            action=row.action,
            payload_json=row.payload_json or {},
            user_id=row.user_id,
            ts=row.ts,
        )
        for row in rows
    ]
