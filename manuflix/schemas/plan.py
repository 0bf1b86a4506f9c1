from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class PlanSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    price: Decimal
    period: str | None = None
    features: list[str] = []
    popular: bool = False
    is_lifetime: bool
    duration_days: int
