"""Domain errors raised by the cart, stock and order layers.

Business-rule errors are never retried by the service itself. ``Unavailable``
is the only retryable failure, and retrying it is left to the caller.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class StorefrontError(Exception):
    code = "storefront_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.extra}


class NotFound(StorefrontError):
    code = "not_found"
    status_code = 404


class InsufficientStock(StorefrontError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message, errors=errors or [])
        self.errors = errors or []


class PaymentDeclined(StorefrontError):
    code = "payment_declined"
    status_code = 402


class PaymentProviderError(StorefrontError):
    """The provider refused the request for reasons a retry will not fix."""

    code = "payment_provider_error"
    status_code = 502


class InvalidTransition(StorefrontError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot change status from '{current}' to '{requested}'",
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class ValidationFailed(StorefrontError):
    code = "validation_failed"
    status_code = 400


class Unavailable(StorefrontError):
    code = "unavailable"
    status_code = 503
    retryable = True


class ReconciliationRequired(StorefrontError):
    """Payment went through but the order could not be committed.

    The customer may have been charged; this must reach an operator instead of
    being reported as an ordinary checkout failure.
    """

    code = "reconciliation_required"
    status_code = 500

    def __init__(self, message: str, case_id: Optional[str], payment_reference: Optional[str]) -> None:
        super().__init__(message, case_id=case_id, payment_reference=payment_reference)
        self.case_id = case_id
        self.payment_reference = payment_reference
