"""Domain errors and helpers for consistent API error responses."""

from __future__ import annotations

from fastapi import HTTPException, status


class StockError(Exception):
    """Base class for workflow failures; ``str(exc)`` is operator-ready."""

    code = "stock.error"
    status_code = status.HTTP_400_BAD_REQUEST


class StockValidationError(StockError):
    code = "stock.validation"
    status_code = 422


class InsufficientStockError(StockValidationError):
    code = "stock.insufficient"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, med_name: str, required: int, available: int) -> None:
        super().__init__(f"Stock insuffisant pour {med_name} (requis: {required}, disponible: {available})")
        self.med_name = med_name
        self.required = required
        self.available = available


class NotFoundError(StockError):
    code = "stock.not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(StockError):
    code = "stock.invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class PartialApplicationError(StockError):
    """A batch failed after writes started; the session was rolled back."""

    code = "stock.partial_application"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def api_error(status_code: int, code: str, detail: str, *, headers: dict[str, str] | None = None) -> HTTPException:
    """Create an :class:`HTTPException` with a normalized payload."""

    payload = {"code": code, "detail": detail}
    return HTTPException(status_code=status_code, detail=payload, headers=headers)
