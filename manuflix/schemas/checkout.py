from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class Customer(BaseModel):
    email: str = ""
    name: str = ""
    cpf: str | None = None


class Charge(BaseModel):
    """A PIX charge as returned by the provider."""

    id: str
    qrcode_image: str | None = None
    copy_paste: str | None = None
    expiration_date: datetime | None = None
    status: str | None = None


class CheckoutCreate(BaseModel):
    plan_id: str


class ChargeView(BaseModel):
    id: str
    qrcode_image: str | None = None
    copy_paste: str | None = None
    expiration_date: datetime | None = None


class CheckoutSnapshot(BaseModel):
    id: str
    plan_id: str
    state: str
    status_label: str | None = None
    error: str | None = None
    countdown_seconds: int | None = None
    countdown: str
    transaction_id: str | None = None
    charge: ChargeView | None = None
