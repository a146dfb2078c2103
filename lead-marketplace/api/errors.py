"""
Mapping of marketplace errors to HTTP responses.

The response `detail` is always {"error": <code>, "message": ..., **details}.
"""

from __future__ import annotations

from typing import Dict

from fastapi import HTTPException

from domain.errors import (
    ErrorCategory,
    LedgerIntegrityError,
    MarketplaceError,
    PermissionDeniedError,
)

_STATUS_BY_CATEGORY: Dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONTENTION: 409,
    ErrorCategory.ECONOMIC: 402,
    ErrorCategory.INTEGRITY: 423,
}


def status_code_for(error: MarketplaceError) -> int:
    if isinstance(error, PermissionDeniedError):
        return 403
    if isinstance(error, LedgerIntegrityError):
        return 500
    return _STATUS_BY_CATEGORY[error.category]


def to_http_exception(error: MarketplaceError) -> HTTPException:
    return HTTPException(
        status_code=status_code_for(error),
        detail={"error": error.code, "message": error.message, **error.details()},
    )


__all__ = ["status_code_for", "to_http_exception"]
