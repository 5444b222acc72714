# Overview: Service error taxonomy shared by services and routes.

"""
Every error a service raises on purpose is a ServiceError subclass. Each one
carries the HTTP status the route layer answers with, a user-facing message
(localized, French) and an optional details dict for structured context.

Anything that is NOT a ServiceError is unexpected: routes roll back, log the
traceback server-side and answer a generic 500.
"""

from __future__ import annotations


GENERIC_INTERNAL_MESSAGE = "Erreur interne du serveur"


class ServiceError(Exception):
    """Base class for expected, client-reportable failures."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    """400-level input problem, detected before touching the data store."""

    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """409-level business rule conflict (duplicate code, session already open...)."""

    status_code = 409


class ForbiddenError(ServiceError):
    status_code = 403


class CancellationWindowError(ForbiddenError):
    """Late cancellation. Answered as 400 to match the sales DELETE contract."""

    status_code = 400


class InsufficientStockError(ConflictError):
    def __init__(self, product_id: int, requested: int, available: int, product_name: str | None = None):
        label = product_name or f"#{product_id}"
        super().__init__(
            f"Stock insuffisant pour le produit {label}",
            details={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class PromoNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Code promo invalide")


class PromoExpiredError(ValidationError):
    def __init__(self):
        super().__init__("Code promo expiré")


class PromoBelowMinimumError(ValidationError):
    def __init__(self, min_amount_cents: int):
        super().__init__(
            f"Montant minimum requis: {min_amount_cents}",
            details={"min_amount_cents": min_amount_cents},
        )
        self.min_amount_cents = min_amount_cents


class PromoUsageLimitError(ValidationError):
    def __init__(self, max_uses: int):
        super().__init__(
            "Limite d'utilisation du code promo atteinte",
            details={"max_uses": max_uses},
        )


class InternalError(ServiceError):
    """Unexpected or data-store failure. `retryable` tells the client a retry may succeed."""

    status_code = 500

    def __init__(self, message: str = GENERIC_INTERNAL_MESSAGE, *, retryable: bool = False, details: dict | None = None):
        details = dict(details or {})
        details["retryable"] = retryable
        super().__init__(message, details=details)
        self.retryable = retryable
