import datetime as dt
import os
import uuid
from typing import Any, Optional

import bcrypt
from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from . import models
from .deps import get_store
from .errors import api_error
from .store import LedgerStore

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

JWT_SECRET = os.getenv("JWT_SECRET", "changeme")
JWT_ALGORITHM = os.getenv("JWT_ALG", "HS256")
JWT_EXP_HOURS = int(os.getenv("JWT_EXP_HOURS", "12"))


class TokenData(BaseModel):
    user_id: str
    role: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(data: dict[str, Any], expires_delta: Optional[dt.timedelta] = None) -> str:
    to_encode = data.copy()
    expire = dt.datetime.utcnow() + (expires_delta or dt.timedelta(hours=JWT_EXP_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenData:
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    return TokenData(user_id=payload.get("sub") or "", role=payload.get("role") or "")


async def get_current_user(
    token: str = Depends(oauth2_scheme), store: LedgerStore = Depends(get_store)
) -> models.User:
    credentials_exception = api_error(
        status.HTTP_401_UNAUTHORIZED,
        "auth.invalid_token",
        "Jeton invalide",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        token_data = decode_access_token(token)
    except JWTError as exc:
        raise credentials_exception from exc
    if not token_data.user_id or not token_data.role:
        raise credentials_exception
    try:
        user_id = uuid.UUID(token_data.user_id)
    except ValueError as exc:
        raise credentials_exception from exc
    user = await store.get_user(user_id)
    if user is None or not user.active:
        raise credentials_exception
    return user
