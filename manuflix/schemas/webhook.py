from __future__ import annotations

from pydantic import BaseModel, Field


class PixWebhookEvent(BaseModel):
    payment_id: str = Field(min_length=1)
    status: str


class PixWebhookResult(BaseModel):
    success: bool = True
    outcome: str
    transaction_id: str
    transaction_status: str
    provider_status: str | None = None
    subscription_id: str | None = None
