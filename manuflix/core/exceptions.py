"""Custom exception types for domain and API layers."""
from __future__ import annotations


class AppError(Exception):
    """Base app exception."""


class ValidationError(AppError):
    """Missing or invalid customer input; nothing was sent to the provider."""


class ProviderError(AppError):
    """PIX provider call failure (transport error, non-2xx or malformed payload)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StoreError(AppError):
    """Persistence failure in the subscription store."""


class DuplicateSubscription(StoreError):
    """A subscription already exists for the transaction."""


class TransactionNotFound(AppError):
    """No transaction matches the given external payment id."""


class CheckoutStateError(AppError):
    """Operation not allowed in the checkout session's current state."""
