"""
Payment confirmation: the single transition both delivery paths go through.

The in-app poll loop and the provider webhook may both observe the terminal
status of a charge, possibly at the same time and possibly more than once.
Both call :class:`PaymentConfirmationService`, which decides the next state
with the pure :func:`next_transaction_state` and relies on the store's
conditional update plus the unique ``transaction_id`` on subscriptions so
that a transaction yields at most one subscription.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from manuflix.core.exceptions import DuplicateSubscription, StoreError, TransactionNotFound
from manuflix.models import (
    TRANSACTION_FAILED,
    TRANSACTION_PAID,
    SubscriptionPlan,
    Transaction,
    UserSubscription,
    now_utc,
)
from manuflix.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"COMPLETED", "CONFIRMED", "PAID", "APPROVED"})
FAILURE_STATUSES = frozenset({"FAILED", "CANCELED", "CANCELLED", "EXPIRED"})


class PaymentOutcome(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Transition(str, Enum):
    NOOP = "noop"
    CONFIRM = "confirm"
    FAIL = "fail"
    ALREADY_CONFIRMED = "already_confirmed"
    ALREADY_FAILED = "already_failed"


def normalize_provider_status(raw_status: Optional[str]) -> PaymentOutcome:
    """Map the provider's status vocabulary (and its synonyms) onto three outcomes."""
    status = (raw_status or "").strip().upper()
    if status in SUCCESS_STATUSES:
        return PaymentOutcome.SUCCEEDED
    if status in FAILURE_STATUSES:
        return PaymentOutcome.FAILED
    return PaymentOutcome.PENDING


def next_transaction_state(current_status: str, provider_status: Optional[str]) -> Transition:
    if current_status == TRANSACTION_PAID:
        return Transition.ALREADY_CONFIRMED
    if current_status == TRANSACTION_FAILED:
        return Transition.ALREADY_FAILED

    outcome = normalize_provider_status(provider_status)
    if outcome is PaymentOutcome.SUCCEEDED:
        return Transition.CONFIRM
    if outcome is PaymentOutcome.FAILED:
        return Transition.FAIL
    return Transition.NOOP


def compute_expiry(plan: SubscriptionPlan, now: datetime) -> Optional[datetime]:
    if plan.is_lifetime:
        return None
    return now + timedelta(days=int(plan.duration_days or 0))


@dataclass
class ConfirmationResult:
    transition: Transition
    transaction: Transaction
    subscription: Optional[UserSubscription] = None

    @property
    def confirmed(self) -> bool:
        return self.transition in (Transition.CONFIRM, Transition.ALREADY_CONFIRMED)

    @property
    def failed(self) -> bool:
        return self.transition in (Transition.FAIL, Transition.ALREADY_FAILED)


class PaymentConfirmationService:
    def __init__(self, store: SubscriptionStore):
        self.store = store

    def apply_by_payment_id(
        self, payment_id: str, provider_status: Optional[str], now: Optional[datetime] = None
    ) -> ConfirmationResult:
        transaction = self.store.get_transaction_by_payment_id(payment_id)
        if transaction is None:
            raise TransactionNotFound(f"Transaction not found for payment_id: {payment_id}")
        return self.apply(transaction, provider_status, now=now)

    def apply(
        self, transaction: Transaction, provider_status: Optional[str], now: Optional[datetime] = None
    ) -> ConfirmationResult:
        # The caller's copy may be stale; decide on what the store says now.
        current = self.store.get_transaction(transaction.id) or transaction
        transition = next_transaction_state(current.status, provider_status)

        if transition is Transition.NOOP:
            return ConfirmationResult(transition, current)

        if transition is Transition.ALREADY_FAILED:
            if normalize_provider_status(provider_status) is PaymentOutcome.SUCCEEDED:
                logger.warning(
                    "Payment %s reported %s after transaction %s was marked failed; needs reconciliation",
                    current.payment_id,
                    provider_status,
                    current.id,
                )
            return ConfirmationResult(transition, current)

        if transition is Transition.FAIL:
            if not self.store.mark_transaction_terminal(current.id, TRANSACTION_FAILED):
                # Lost the race: whoever won already decided the terminal status.
                refreshed = self.store.get_transaction(current.id) or current
                return self.apply(refreshed, provider_status, now=now)
            logger.info("Transaction %s failed with provider status %s", current.id, provider_status)
            return ConfirmationResult(Transition.FAIL, self.store.get_transaction(current.id) or current)

        if transition is Transition.CONFIRM:
            won = self.store.mark_transaction_terminal(current.id, TRANSACTION_PAID)
            refreshed = self.store.get_transaction(current.id) or current
            if not won:
                if refreshed.status != TRANSACTION_PAID:
                    return self.apply(refreshed, provider_status, now=now)
                transition = Transition.ALREADY_CONFIRMED
            else:
                logger.info("Transaction %s paid (payment %s)", current.id, current.payment_id)
            subscription = self._ensure_subscription(refreshed, now or now_utc())
            return ConfirmationResult(transition, refreshed, subscription)

        # ALREADY_CONFIRMED: a previous delivery may have died between the two writes.
        subscription = self._ensure_subscription(current, now or now_utc())
        return ConfirmationResult(transition, current, subscription)

    def _ensure_subscription(self, transaction: Transaction, now: datetime) -> Optional[UserSubscription]:
        existing = self.store.get_subscription_for_transaction(transaction.id)
        if existing is not None:
            return existing

        plan = self.store.get_plan(transaction.plan_id)
        if plan is None:
            raise StoreError(f"Plan not found: {transaction.plan_id}")

        try:
            return self.store.create_user_subscription(
                user_id=transaction.user_id,
                plan_id=plan.id,
                is_lifetime=bool(plan.is_lifetime),
                expires_at=compute_expiry(plan, now),
                transaction_id=transaction.id,
            )
        except DuplicateSubscription:
            logger.info("Subscription for transaction %s was created concurrently", transaction.id)
            return self.store.get_subscription_for_transaction(transaction.id)
