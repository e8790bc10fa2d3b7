"""Error taxonomy for the invoicing domain.

Services raise these; the API layer turns them into the JSON error envelope
(``status`` is ``fail`` for 4xx and ``error`` otherwise).
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class InvoicingError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "fail" if 400 <= self.status_code < 500 else "error",
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(InvoicingError):
    status_code = 400


class NotFoundError(InvoicingError):
    status_code = 404

    def __init__(self, entity: str, missing_ids: Iterable[str] = (), message: Optional[str] = None) -> None:
        self.entity = entity
        self.missing_ids = [str(value) for value in missing_ids]
        if message is None:
            label = entity.capitalize()
            if len(self.missing_ids) == 1:
                message = f"{label} not found: {self.missing_ids[0]}"
            elif self.missing_ids:
                message = f"{label}s not found: {', '.join(self.missing_ids)}"
            else:
                message = f"{label} not found"
        super().__init__(message, details={"entity": entity, "missing_ids": self.missing_ids})


class InsufficientStockError(InvoicingError):
    status_code = 400

    def __init__(self, product_id: str, product_name: str, available: int, requested: int) -> None:
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_name}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )


class ConflictError(InvoicingError):
    status_code = 400


class AuthenticationError(InvoicingError):
    status_code = 401


class PermissionDeniedError(InvoicingError):
    status_code = 403


class PersistenceError(InvoicingError):
    status_code = 500
