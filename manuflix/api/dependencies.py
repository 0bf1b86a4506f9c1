"""Shared API dependencies backed by the components on ``app.state``."""
from fastapi import Request

from manuflix.core.security import get_current_user, verify_webhook_token
from manuflix.services.checkout import CheckoutSessionManager, PaymentProvider
from manuflix.services.payment_confirmation import PaymentConfirmationService
from manuflix.services.subscription_store import SubscriptionStore


def get_store(request: Request) -> SubscriptionStore:
    return request.app.state.store


def get_provider(request: Request) -> PaymentProvider:
    return request.app.state.provider


def get_confirmation(request: Request) -> PaymentConfirmationService:
    return request.app.state.confirmation


def get_session_manager(request: Request) -> CheckoutSessionManager:
    return request.app.state.checkout_sessions


__all__ = [
    "get_current_user",
    "verify_webhook_token",
    "get_store",
    "get_provider",
    "get_confirmation",
    "get_session_manager",
]
