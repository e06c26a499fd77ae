"""Process settings from the environment and the persisted alert configuration."""

from __future__ import annotations

import logging
import os
from typing import Any

from pydantic import ValidationError

from .alerts import AlertConfig

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+asyncpg://anesth:anesth@db:5432/anesth")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CATALOG_IMPORT_DIR = os.getenv("CATALOG_IMPORT_DIR", "/data/catalog")
CORS_ORIGINS = os.getenv(
    "ANESTH_API_CORS_ORIGINS",
    "http://localhost:5173,http://localhost:8080",
)

ALERT_CONFIG_KEY = "alerts"


async def load_alert_config(store: Any) -> AlertConfig:
    """Read the alert configuration, falling back to defaults when unset or invalid."""

    raw = await store.get_setting(ALERT_CONFIG_KEY)
    if not raw:
        return AlertConfig()
    try:
        return AlertConfig.model_validate(raw)
    except ValidationError:
        logger.warning("Stored alert configuration is invalid, using defaults")
        return AlertConfig()


async def save_alert_config(store: Any, config: AlertConfig, user_id: Any = None) -> AlertConfig:
    payload = config.model_dump()
    await store.put_setting(ALERT_CONFIG_KEY, payload)
    await store.log_activity("settings", ALERT_CONFIG_KEY, "updated", payload, user_id)
    await store.commit()
    logger.info("Alert configuration updated: %s", payload)
    return config
