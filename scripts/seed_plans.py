"""
Create the tables if needed and (re)seed the reference subscription plans.

Usage:
  python scripts/seed_plans.py
"""
from __future__ import annotations

from manuflix.database import get_engine, get_session_factory, init_db
from manuflix.models import SubscriptionPlan


def main() -> None:
    inserted = init_db(get_engine(), get_session_factory())
    db = get_session_factory()()
    try:
        total = db.query(SubscriptionPlan).count()
        print(f"seed_plans inserted={inserted} total={int(total or 0)}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
