from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class SubscriptionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    plan_id: str
    transaction_id: str | None = None
    is_active: bool
    is_lifetime: bool
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None


class TransactionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    plan_id: str
    amount: Decimal
    payment_method: str
    payment_id: str | None = None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AccessSchema(BaseModel):
    user_id: str
    has_access: bool
