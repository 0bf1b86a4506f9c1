from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import FIXED_NOW
from manuflix.core.exceptions import DuplicateSubscription, StoreError
from manuflix.models import TRANSACTION_FAILED, TRANSACTION_PAID, TRANSACTION_PENDING
from manuflix.services.subscription_store import as_utc


def test_list_plans_ordered_by_price(store):
    plans = store.list_plans()
    assert [p.id for p in plans] == ["monthly", "yearly", "lifetime"]
    assert plans[0].price == Decimal("19.90")


def test_get_plan_missing_returns_none(store):
    assert store.get_plan("does-not-exist") is None
    assert store.get_plan("lifetime").is_lifetime is True


def test_create_transaction_is_pending_and_found_by_payment_id(store):
    tx = store.create_transaction("user-1", "monthly", Decimal("19.90"), "pix", "charge-1")
    assert tx.status == TRANSACTION_PENDING

    found = store.get_transaction_by_payment_id("charge-1")
    assert found is not None
    assert found.id == tx.id
    assert store.get_transaction_by_payment_id("unknown") is None


def test_duplicate_payment_id_is_rejected(store):
    store.create_transaction("user-1", "monthly", Decimal("19.90"), "pix", "charge-1")
    with pytest.raises(StoreError):
        store.create_transaction("user-2", "monthly", Decimal("19.90"), "pix", "charge-1")


def test_update_transaction_status_is_idempotent(store):
    tx = store.create_transaction("user-1", "monthly", Decimal("19.90"), "pix", "charge-1")
    first = store.update_transaction_status(tx.id, TRANSACTION_PAID)
    second = store.update_transaction_status(tx.id, TRANSACTION_PAID)
    assert first.status == second.status == TRANSACTION_PAID


def test_update_unknown_transaction_raises(store):
    with pytest.raises(StoreError):
        store.update_transaction_status("missing", TRANSACTION_PAID)


def test_mark_transaction_terminal_only_first_caller_wins(store):
    tx = store.create_transaction("user-1", "monthly", Decimal("19.90"), "pix", "charge-1")
    assert store.mark_transaction_terminal(tx.id, TRANSACTION_PAID) is True
    assert store.mark_transaction_terminal(tx.id, TRANSACTION_PAID) is False
    assert store.mark_transaction_terminal(tx.id, TRANSACTION_FAILED) is False
    assert store.get_transaction(tx.id).status == TRANSACTION_PAID


def test_user_transactions_newest_first(store):
    store.create_transaction("user-1", "monthly", Decimal("19.90"), "pix", "charge-1")
    store.create_transaction("user-1", "yearly", Decimal("149.90"), "pix", "charge-2")
    store.create_transaction("user-2", "yearly", Decimal("149.90"), "pix", "charge-3")
    assert [t.payment_id for t in store.get_user_transactions("user-1")] == ["charge-2", "charge-1"]


def test_second_subscription_for_same_transaction_is_rejected(store):
    store.create_user_subscription("user-1", "lifetime", True, None, transaction_id="tx-1")
    with pytest.raises(DuplicateSubscription):
        store.create_user_subscription("user-1", "lifetime", True, None, transaction_id="tx-1")


def test_active_subscription_is_latest_active_row(store):
    assert store.get_active_subscription("user-1") is None

    store.create_user_subscription("user-1", "monthly", False, FIXED_NOW + timedelta(days=30))
    latest = store.create_user_subscription("user-1", "yearly", False, FIXED_NOW + timedelta(days=365))
    # Prior subscriptions are not deactivated by the store.
    active = store.get_active_subscription("user-1")
    assert active.id == latest.id

    store.update_subscription_status(latest.id, False)
    assert store.get_active_subscription("user-1").plan_id == "monthly"


def test_lifetime_subscription_never_stores_expiry(store):
    sub = store.create_user_subscription("user-1", "lifetime", True, FIXED_NOW)
    assert store.get_active_subscription("user-1").expires_at is None
    assert sub.is_lifetime is True


def test_check_user_access(store):
    assert store.check_user_access("nobody", now=FIXED_NOW) is False

    store.create_user_subscription("user-1", "monthly", False, FIXED_NOW + timedelta(days=30))
    assert store.check_user_access("user-1", now=FIXED_NOW) is True

    later = FIXED_NOW + timedelta(days=31)
    assert store.check_user_access("user-1", now=later) is False
    assert store.get_active_subscription("user-1") is None

    store.create_user_subscription("user-2", "lifetime", True, None)
    assert store.check_user_access("user-2", now=later + timedelta(days=10000)) is True


def test_deactivate_expired_subscriptions(store):
    store.create_user_subscription("user-1", "monthly", False, FIXED_NOW - timedelta(days=1))
    store.create_user_subscription("user-2", "monthly", False, FIXED_NOW + timedelta(days=1))
    store.create_user_subscription("user-3", "lifetime", True, None)

    assert store.deactivate_expired_subscriptions(now=FIXED_NOW) == 1
    assert store.get_active_subscription("user-1") is None
    assert as_utc(store.get_active_subscription("user-2").expires_at) == FIXED_NOW + timedelta(days=1)
    assert store.get_active_subscription("user-3") is not None
