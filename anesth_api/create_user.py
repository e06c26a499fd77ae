"""Create or reset a user account.

Usage:
    anesth-create-user dupont --role pharmacist --full-name "Dr Dupont"

The password is read from ANESTH_USER_PASSWORD or prompted for.
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import getpass
import logging
import os
import sys
import uuid

from . import models
from .auth import get_password_hash
from .deps import SessionLocal, engine
from .store import LedgerStore

logger = logging.getLogger(__name__)


async def upsert_user(
    store: LedgerStore,
    username: str,
    password: str,
    role: str,
    full_name: str | None = None,
) -> models.User:
    user = await store.get_user_by_username(username)
    if user is None:
        user = models.User(
            id=uuid.uuid4(),
            username=username,
            created_at=dt.datetime.utcnow(),
        )
        store.session.add(user)
        action = "created"
    else:
        action = "reset"
    user.password_hash = get_password_hash(password)
    user.role = role
    user.active = True
    if full_name:
        user.full_name = full_name
    await store.log_activity("user", username, action, {"role": role})
    await store.commit()
    logger.info("User %s %s with role %s", username, action, role)
    return user


async def _run(args: argparse.Namespace, password: str) -> None:
    async with engine.begin() as connection:
        await connection.run_sync(models.Base.metadata.create_all)
    async with SessionLocal() as session:
        await upsert_user(LedgerStore(session), args.username, password, args.role, args.full_name)
    await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create or reset an account")
    parser.add_argument("username")
    parser.add_argument("--role", choices=[role.value for role in models.Role], default=models.Role.ANESTHETIST.value)
    parser.add_argument("--full-name", default=None)
    args = parser.parse_args(argv)

    password = os.getenv("ANESTH_USER_PASSWORD") or getpass.getpass("Mot de passe: ")
    if not password:
        print("Mot de passe requis", file=sys.stderr)
        return 1
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_run(args, password))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
