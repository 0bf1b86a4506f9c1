from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from manuflix.config import PixProviderConfig
from manuflix.core.exceptions import ProviderError, ValidationError
from manuflix.schemas.checkout import Charge, Customer

logger = logging.getLogger(__name__)


class PushinPayClient:
    """PIX charge creation and status lookup through PushinPay."""

    def __init__(self, config: PixProviderConfig, transport: httpx.AsyncBaseTransport | None = None):
        if not config.token:
            raise ValueError("PushinPay token is not configured")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(f"PushinPay request failed: {exc}") from exc

        if response.is_error:
            raise ProviderError(
                f"PushinPay returned HTTP {response.status_code} for {method} {path}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"PushinPay returned a non-JSON body for {method} {path}") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"PushinPay returned an unexpected payload for {method} {path}")
        return data

    async def create_charge(self, amount: Decimal, description: str, customer: Customer) -> Charge:
        """
        Create a PIX charge. Not idempotent: every call is a new financial charge.
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Charge amount must be positive")

        customer_payload: dict[str, Any] = {"email": customer.email, "name": customer.name}
        if customer.cpf:
            customer_payload["cpf"] = customer.cpf
        payload = {
            "amount": float(amount.quantize(Decimal("0.01"))),
            "description": description,
            "customer": customer_payload,
            "expiration": self.config.charge_expiration_seconds,
        }

        data = await self._request("POST", "/pix/charges", payload)
        if not data.get("id"):
            raise ProviderError("PushinPay charge response has no id")
        try:
            charge = Charge(
                id=str(data["id"]),
                qrcode_image=data.get("qrcode_image"),
                copy_paste=data.get("copy_paste"),
                expiration_date=data.get("expiration_date") or None,
                status=data.get("status"),
            )
        except PydanticValidationError as exc:
            raise ProviderError(f"PushinPay charge response is malformed: {exc}") from exc

        logger.info("Created PIX charge %s amount=%s", charge.id, payload["amount"])
        return charge

    async def get_charge_status(self, charge_id: str) -> str:
        data = await self._request("GET", f"/pix/charges/{charge_id}")
        status = data.get("status")
        if not status:
            raise ProviderError(f"PushinPay status response for charge {charge_id} has no status")
        return str(status)
