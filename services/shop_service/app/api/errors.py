"""Translation of domain exceptions into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from ..errors import ConflictError, InvalidStockEvent, NotFoundError, ShopError, ValidationFailed


def as_http_error(exc: ShopError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationFailed):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors)
    if isinstance(exc, InvalidStockEvent):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
