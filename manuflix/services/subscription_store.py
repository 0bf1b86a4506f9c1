"""
Record store for plans, transactions and user subscriptions.

Each operation runs in its own short-lived session taken from the injected
session factory, so a checkout session can hold on to the returned rows while
it polls the provider for minutes.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from manuflix.core.exceptions import DuplicateSubscription, StoreError
from manuflix.models import (
    TRANSACTION_PENDING,
    TRANSACTION_STATUSES,
    SubscriptionPlan,
    Transaction,
    UserSubscription,
    now_utc,
)

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Store operation %s failed: %s", action, exc)
            raise StoreError(f"Could not {action}: {exc}") from exc
        finally:
            db.close()

    # Plans

    def list_plans(self) -> list[SubscriptionPlan]:
        with self._session("list plans") as db:
            return db.query(SubscriptionPlan).order_by(SubscriptionPlan.price.asc()).all()

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        with self._session("load plan") as db:
            return db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()

    # Transactions

    def create_transaction(
        self,
        user_id: str,
        plan_id: str,
        amount: Decimal,
        method: str,
        external_payment_id: str,
    ) -> Transaction:
        with self._session("create transaction") as db:
            transaction = Transaction(
                user_id=user_id,
                plan_id=plan_id,
                amount=amount,
                payment_method=method,
                payment_id=external_payment_id,
                status=TRANSACTION_PENDING,
            )
            db.add(transaction)
            db.commit()
            logger.info(
                "Recorded pending transaction %s for user %s payment %s",
                transaction.id,
                user_id,
                external_payment_id,
            )
            return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._session("load transaction") as db:
            return db.query(Transaction).filter(Transaction.id == transaction_id).first()

    def get_transaction_by_payment_id(self, payment_id: str) -> Optional[Transaction]:
        with self._session("load transaction by payment id") as db:
            return db.query(Transaction).filter(Transaction.payment_id == payment_id).first()

    def get_user_transactions(self, user_id: str) -> list[Transaction]:
        with self._session("list user transactions") as db:
            return (
                db.query(Transaction)
                .filter(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc())
                .all()
            )

    def update_transaction_status(self, transaction_id: str, status: str) -> Transaction:
        """Set the status unconditionally; writing the same status twice is a no-op."""
        if status not in TRANSACTION_STATUSES:
            raise ValueError(f"Unknown transaction status: {status}")
        with self._session("update transaction") as db:
            transaction = db.query(Transaction).filter(Transaction.id == transaction_id).first()
            if transaction is None:
                raise StoreError(f"Transaction {transaction_id} not found")
            if transaction.status != status:
                transaction.status = status
                transaction.updated_at = now_utc()
                db.commit()
            return transaction

    def mark_transaction_terminal(self, transaction_id: str, status: str) -> bool:
        """
        Move a pending transaction to ``status`` in a single conditional UPDATE.

        Returns True only for the caller whose update took effect, which makes
        this the serialization point between the poll loop and the webhook.
        """
        if status not in TRANSACTION_STATUSES or status == TRANSACTION_PENDING:
            raise ValueError(f"Not a terminal transaction status: {status}")
        with self._session("finalize transaction") as db:
            result = db.execute(
                update(Transaction)
                .where(Transaction.id == transaction_id, Transaction.status == TRANSACTION_PENDING)
                .values(status=status, updated_at=now_utc())
            )
            db.commit()
            return result.rowcount == 1

    # Subscriptions

    def create_user_subscription(
        self,
        user_id: str,
        plan_id: str,
        is_lifetime: bool,
        expires_at: Optional[datetime],
        transaction_id: Optional[str] = None,
    ) -> UserSubscription:
        """Insert an active subscription. Prior subscriptions of the user are left untouched."""
        with self._session("create subscription") as db:
            subscription = UserSubscription(
                user_id=user_id,
                plan_id=plan_id,
                transaction_id=transaction_id,
                is_active=True,
                is_lifetime=is_lifetime,
                expires_at=None if is_lifetime else expires_at,
            )
            db.add(subscription)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if transaction_id is not None:
                    raise DuplicateSubscription(
                        f"Subscription already exists for transaction {transaction_id}"
                    ) from exc
                raise
            logger.info(
                "Activated subscription %s for user %s plan %s (lifetime=%s)",
                subscription.id,
                user_id,
                plan_id,
                is_lifetime,
            )
            return subscription

    def get_subscription_for_transaction(self, transaction_id: str) -> Optional[UserSubscription]:
        with self._session("load subscription by transaction") as db:
            return (
                db.query(UserSubscription)
                .filter(UserSubscription.transaction_id == transaction_id)
                .first()
            )

    def get_active_subscription(self, user_id: str) -> Optional[UserSubscription]:
        with self._session("load active subscription") as db:
            return (
                db.query(UserSubscription)
                .filter(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
                .order_by(UserSubscription.created_at.desc())
                .first()
            )

    def update_subscription_status(self, subscription_id: str, is_active: bool) -> UserSubscription:
        with self._session("update subscription") as db:
            subscription = (
                db.query(UserSubscription).filter(UserSubscription.id == subscription_id).first()
            )
            if subscription is None:
                raise StoreError(f"Subscription {subscription_id} not found")
            if subscription.is_active != is_active:
                subscription.is_active = is_active
                subscription.updated_at = now_utc()
                db.commit()
            return subscription

    def check_user_access(self, user_id: str, now: Optional[datetime] = None) -> bool:
        subscription = self.get_active_subscription(user_id)
        if subscription is None:
            return False
        if subscription.is_lifetime:
            return True

        now = now or now_utc()
        expires_at = as_utc(subscription.expires_at)
        if expires_at is not None and now > expires_at:
            logger.info("Subscription %s of user %s expired at %s", subscription.id, user_id, expires_at)
            self.update_subscription_status(subscription.id, False)
            return False
        return True

    def deactivate_expired_subscriptions(self, now: Optional[datetime] = None) -> int:
        now = now or now_utc()
        with self._session("expire subscriptions") as db:
            candidates = (
                db.query(UserSubscription)
                .filter(
                    UserSubscription.is_active.is_(True),
                    UserSubscription.is_lifetime.is_(False),
                    UserSubscription.expires_at.isnot(None),
                )
                .all()
            )
            expired = 0
            for subscription in candidates:
                expires_at = as_utc(subscription.expires_at)
                if expires_at is not None and expires_at < now:
                    subscription.is_active = False
                    subscription.updated_at = now
                    expired += 1
            if expired:
                db.commit()
            return expired
