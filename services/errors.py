"""Error kinds raised by catalog services.

Everything except ``AssetNotFoundError`` is an ``HTTPException`` so that
routers can let service errors propagate unchanged.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


class CatalogValidationError(HTTPException):
    """A required field is missing or malformed."""

    def __init__(self, detail: str):
        super().__init__(status_code=422, detail=detail)


class NotFoundError(HTTPException):
    """An item, submission or user does not exist."""

    def __init__(self, detail: str):
        super().__init__(status_code=404, detail=detail)


class ConflictError(HTTPException):
    """A terminal submission was asked to take a different decision."""

    def __init__(self, detail: str):
        super().__init__(status_code=409, detail=detail)


class DependencyFailureError(HTTPException):
    """The store, asset store or mail relay failed.

    ``reason`` keeps the internal message for logs; clients only ever see
    the generic detail.
    """

    GENERIC_DETAIL = "A backing service is unavailable. Try again later."

    def __init__(self, reason: str = ""):
        super().__init__(status_code=503, detail=self.GENERIC_DETAIL)
        self.reason = reason


class PartialFailureError(HTTPException):
    """A multi-step write left state that an operator has to reconcile."""

    def __init__(self, detail: str, reference_id: Optional[str] = None):
        message = detail
        if reference_id:
            message = f"{detail} (reference: {reference_id})"
        super().__init__(status_code=500, detail=f"Partial failure: {message}")
        self.reference_id = reference_id


class AssetNotFoundError(LookupError):
    """No stored asset exists for the requested item and kind."""

    def __init__(self, item_id: str, kind: str):
        super().__init__(f"No {kind} asset stored for item {item_id}")
        self.item_id = item_id
        self.kind = kind
