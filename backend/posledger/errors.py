# Overview: Domain error taxonomy shared by services and routes.

"""
Every error here is raised inside a transaction script and aborts it wholesale.
Routes turn them into JSON responses using `status_code`, `kind` and `details`.
"""

from __future__ import annotations


class CommerceError(Exception):
    """Base class for errors surfaced to callers of the commerce engine."""

    status_code = 400
    kind = "commerce_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class ValidationError(CommerceError):
    """400-level input problem (missing lines, non-positive quantity...)."""

    status_code = 400
    kind = "validation_error"


class NotFoundError(CommerceError):
    """Document, product or line missing, or not visible to this tenant."""

    status_code = 404
    kind = "not_found"


class InsufficientStockError(CommerceError):
    """A debiting post would drive stock below zero."""

    status_code = 409
    kind = "insufficient_stock"

    def __init__(self, product_id: int, product_name: str | None, available, requested):
        name = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": str(available),
                "requested": str(requested),
            },
        )


class OverReturnError(CommerceError):
    """Return quantity exceeds what is still returnable on the original line."""

    status_code = 409
    kind = "over_return"


class EditabilityError(CommerceError):
    """Document may not be edited (locked, tax period, role window, cancelled)."""

    status_code = 409
    kind = "not_editable"

    def __init__(self, message: str, restriction: str, details: dict | None = None):
        payload = {"restriction": restriction}
        payload.update(details or {})
        super().__init__(message, details=payload)
        self.restriction = restriction


class PermissionDeniedError(CommerceError):
    """Actor role may not perform an administrative operation."""

    status_code = 403
    kind = "permission_denied"


class AllocationExhaustedError(CommerceError):
    """Document-number retries exhausted. Nothing was committed."""

    status_code = 503
    kind = "allocation_exhausted"


class StorageError(CommerceError):
    """Transaction or connection failure. Nothing was committed."""

    status_code = 500
    kind = "storage_error"


class DocumentNumberConflict(Exception):
    """
    Internal: the document insert hit the (tenant_id, document_number) unique
    constraint. The enclosing operation is rolled back and run again.
    """

    def __init__(self, document_number: str):
        super().__init__(f"document number {document_number} already used")
        self.document_number = document_number
