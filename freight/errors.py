"""
Error taxonomy shared by the booking lifecycle, escrow ledger and HTTP boundary.

Each error carries a human-readable message, the HTTP status the boundary
renders it with, and optional context fields copied into the response body.
"""
from fastapi import status


class FreightError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_body(self) -> dict:
        return {"detail": self.message, **self.context}


class ValidationError(FreightError):
    """Missing or malformed input."""
    status_code = status.HTTP_400_BAD_REQUEST


class ConfigurationError(ValidationError):
    """A truck's rate card is incomplete."""


class OutOfBoundsError(ValidationError):
    """Coordinates outside the operating geography."""


class AuthorizationError(FreightError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(FreightError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(FreightError):
    """A state precondition does not hold."""
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot change status from {current} to {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class DependencyError(FreightError):
    """Distance estimator, geocoder or payment gateway unusable."""
    status_code = status.HTTP_502_BAD_GATEWAY


class ManualInterventionRequired(FreightError):
    """
    Refund requested after escrow was released to the trucker.

    Not a failure of the request: the refund intent is recorded and flagged
    for support, but no money was returned automatically.
    """
    status_code = status.HTTP_202_ACCEPTED

    def __init__(self, payment_id: str, message: str | None = None):
        super().__init__(
            message or "Payment was already released to the trucker. Manual refund processing required.",
            payment_id=payment_id,
            requires_manual_processing=True,
        )
        self.payment_id = payment_id
