"""FastAPI application entrypoint for the anesthesia stock API."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CORS_ORIGINS, LOG_LEVEL
from .deps import engine
from .errors import StockError
from .models import Base
from .routers import (
    activity,
    auth,
    catalog_import,
    dashboard,
    exits,
    incidents,
    inventory_audits,
    medications,
    receptions,
    settings,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("anesth-api")

app = FastAPI(title="Anesthesia Stock API", version="0.1.0")

allow_origins = [origin.strip() for origin in CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _create_tables() -> None:
    """Ensure the database schema exists before serving requests."""

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        payload: dict[str, Any] = {
            "detail": str(detail.get("detail", "Erreur interne")),
            "code": str(detail.get("code", f"http.{exc.status_code}")),
        }
    elif isinstance(detail, str):
        payload = {"detail": detail, "code": f"http.{exc.status_code}"}
    else:
        payload = {"detail": "Erreur inattendue", "code": "http.unexpected"}
    if exc.headers:
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(StockError)
async def _stock_error_handler(request: Request, exc: StockError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc), "code": exc.code})


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:  # pragma: no cover - integration glue
    payload = {"detail": "Données invalides", "code": "validation_error", "errors": exc.errors()}
    return JSONResponse(status_code=422, content=jsonable_encoder(payload))


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(medications.router, prefix="/medications", tags=["medications"])
app.include_router(receptions.router, prefix="/receptions", tags=["receptions"])
app.include_router(exits.router, prefix="/exits", tags=["exits"])
app.include_router(incidents.router, prefix="/incidents", tags=["incidents"])
app.include_router(inventory_audits.router, prefix="/inventory-audits", tags=["inventory-audits"])
app.include_router(settings.router, prefix="/settings", tags=["settings"])
app.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
app.include_router(catalog_import.router, prefix="/import/catalog", tags=["import"])
app.include_router(activity.router, prefix="/activity", tags=["activity"])


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
