from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError

from .. import auth as auth_utils
from .. import models, schemas
from ..deps import get_store
from ..errors import api_error
from ..store import LedgerStore

router = APIRouter()


async def _read_credentials(request: Request) -> schemas.LoginRequest:
    """Accept a JSON body or the OAuth2 password form."""

    try:
        if request.headers.get("content-type", "").startswith("application/json"):
            return schemas.LoginRequest.model_validate(await request.json())
        form = await request.form()
        return schemas.LoginRequest(username=form.get("username", ""), password=form.get("password", ""))
    except (ValidationError, ValueError) as exc:
        raise api_error(422, "auth.invalid_request", "Identifiant et mot de passe requis") from exc


async def _register_login_attempt(
    store: LedgerStore,
    *,
    username: str,
    success: bool,
    user_id=None,
    detail: str | None = None,
) -> None:
    await store.log_activity(
        "auth",
        username,
        "login_success" if success else "login_failed",
        {"username": username, "success": success, "detail": detail},
        user_id,
    )
    await store.commit()


@router.post("/login", response_model=schemas.Token)
async def login(request: Request, store: LedgerStore = Depends(get_store)) -> schemas.Token:
    credentials = await _read_credentials(request)
    user = await store.get_user_by_username(credentials.username)
    if user is None or not auth_utils.verify_password(credentials.password, user.password_hash):
        await _register_login_attempt(
            store,
            username=credentials.username,
            success=False,
            detail="Identifiants invalides",
        )
        raise api_error(status.HTTP_401_UNAUTHORIZED, "auth.invalid_credentials", "Identifiants invalides")
    if not user.active:
        await _register_login_attempt(
            store,
            username=credentials.username,
            success=False,
            user_id=user.id,
            detail="Compte désactivé",
        )
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.inactive_user", "Compte désactivé")
    token = auth_utils.create_access_token({"sub": str(user.id), "role": user.role})
    await _register_login_attempt(store, username=credentials.username, success=True, user_id=user.id)
    return schemas.Token(access_token=token)


@router.post("/refresh", response_model=schemas.Token)
async def refresh(user: models.User = Depends(auth_utils.get_current_user)) -> schemas.Token:
    token = auth_utils.create_access_token({"sub": str(user.id), "role": user.role})
    return schemas.Token(access_token=token)


@router.get("/me", response_model=schemas.UserProfile)
async def me(user: models.User = Depends(auth_utils.get_current_user)) -> schemas.UserProfile:
    return schemas.UserProfile(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=user.role,
        active=user.active,
        created_at=user.created_at,
    )
