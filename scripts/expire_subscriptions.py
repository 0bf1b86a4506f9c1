"""
Deactivate subscriptions whose expiry date has passed. Meant for a daily cron.

Usage:
  python scripts/expire_subscriptions.py
"""
from __future__ import annotations

from manuflix.database import get_session_factory
from manuflix.services.subscription_store import SubscriptionStore


def main() -> None:
    store = SubscriptionStore(get_session_factory())
    expired = store.deactivate_expired_subscriptions()
    print(f"expire_subscriptions deactivated={expired}")


if __name__ == "__main__":
    main()
