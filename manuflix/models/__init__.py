"""
SQLAlchemy models for the Manuflix checkout.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

TRANSACTION_PENDING = "pending"
TRANSACTION_PAID = "paid"
TRANSACTION_FAILED = "failed"
TRANSACTION_STATUSES = (TRANSACTION_PENDING, TRANSACTION_PAID, TRANSACTION_FAILED)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(String(64), primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    period = Column(Text)
    features = Column(JSON, default=list)
    popular = Column(Boolean, default=False)
    is_lifetime = Column(Boolean, nullable=False, default=False)
    duration_days = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    plan_id = Column(String(64), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(32), nullable=False, default="pix")
    payment_id = Column(String(128), unique=True, index=True)
    status = Column(String(16), nullable=False, default=TRANSACTION_PENDING)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"
    __table_args__ = (Index("ix_user_subscriptions_user_active", "user_id", "is_active"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False)
    plan_id = Column(String(64), nullable=False)
    # One subscription per paid transaction; duplicate deliveries hit this constraint.
    transaction_id = Column(String(36), unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_lifetime = Column(Boolean, nullable=False, default=False)
    starts_at = Column(DateTime(timezone=True), default=now_utc)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)


__all__ = [
    "Base",
    "SubscriptionPlan",
    "Transaction",
    "UserSubscription",
    "TRANSACTION_PENDING",
    "TRANSACTION_PAID",
    "TRANSACTION_FAILED",
    "TRANSACTION_STATUSES",
    "now_utc",
]
