from fastapi import APIRouter, Depends, status
from pydantic import ValidationError

from .. import schemas
from ..alerts import AlertConfig
from ..auth import get_current_user
from ..config import save_alert_config
from ..deps import get_alert_config, get_store
from ..errors import api_error
from ..models import Role
from ..rbac import require_role
from ..store import LedgerStore

router = APIRouter()


@router.get("/alerts", response_model=schemas.AlertConfigPayload)
async def read_alert_config(
    config: AlertConfig = Depends(get_alert_config),
    user=Depends(get_current_user),
) -> schemas.AlertConfigPayload:
    require_role(user)
    return schemas.AlertConfigPayload(**config.model_dump())


@router.put("/alerts", response_model=schemas.AlertConfigPayload)
async def update_alert_config(
    payload: schemas.AlertConfigPayload,
    store: LedgerStore = Depends(get_store),
    user=Depends(get_current_user),
) -> schemas.AlertConfigPayload:
    require_role(user, Role.PHARMACIST)
    try:
        config = AlertConfig(**payload.model_dump())
    except ValidationError as exc:
        raise api_error(
            422,
            "settings.invalid",
            "Les coefficients et seuils statiques doivent respecter critique <= faible <= normal",
        ) from exc
    saved = await save_alert_config(store, config, user.id)
    return schemas.AlertConfigPayload(**saved.model_dump())
