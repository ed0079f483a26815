"""Client for the YooKassa payments API (v3)."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from realtorpro.config import settings
from realtorpro.services.billing.errors import (
    PaymentGatewayError,
    PaymentGatewayTimeoutError,
    PaymentGatewayUnavailableError,
)


class PaymentCreated(BaseModel):
    id: str
    status: str
    confirmation_url: str | None = None
    metadata: dict[str, Any] = {}


class YooKassaClient:
    """Minimal async wrapper around the payment creation and lookup endpoints."""

    def __init__(
        self,
        shop_id: str,
        secret_key: str,
        *,
        base_url: str = "https://api.yookassa.ru/v3",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not shop_id or not secret_key:
            raise PaymentGatewayUnavailableError()
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            auth=httpx.BasicAuth(shop_id, secret_key),
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> YooKassaClient:
        """Instantiate from YOOKASSA_SHOP_ID / YOOKASSA_SECRET_KEY."""
        return cls(
            shop_id=settings.yookassa_shop_id or "",
            secret_key=settings.yookassa_secret_key or "",
            base_url=settings.yookassa_api_url,
            timeout=settings.yookassa_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        return_url: str,
        description: str,
        metadata: dict[str, Any],
        idempotence_key: str | None = None,
    ) -> PaymentCreated:
        """Create a captured payment with a redirect confirmation."""
        if amount <= 0:
            raise ValueError("amount must be positive.")
        payload = {
            "amount": {"value": f"{amount:.2f}", "currency": currency},
            "confirmation": {"type": "redirect", "return_url": return_url},
            "capture": True,
            "description": description,
            "metadata": metadata,
        }
        headers = {"Idempotence-Key": idempotence_key or str(uuid.uuid4())}
        data = await self._request("POST", "/payments", json=payload, headers=headers)
        return self._parse_payment(data)

    async def get_payment(self, payment_id: str) -> PaymentCreated:
        if not payment_id:
            raise ValueError("payment_id is required.")
        data = await self._request("GET", f"/payments/{payment_id}")
        return self._parse_payment(data)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise PaymentGatewayTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"HTTP error calling YooKassa: {exc}") from exc

        if response.status_code >= 400:
            detail = response.text[:200]
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("description") or detail
            raise PaymentGatewayError(
                f"YooKassa request failed: {response.status_code} - {detail}",
                code=f"YOOKASSA_{response.status_code}",
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise PaymentGatewayError(
                "Failed to decode YooKassa response JSON.", code="YOOKASSA_SCHEMA_ERR"
            ) from exc
        if not isinstance(data, dict):
            raise PaymentGatewayError("Unexpected YooKassa response.", code="YOOKASSA_SCHEMA_ERR")
        return data

    def _parse_payment(self, data: dict[str, Any]) -> PaymentCreated:
        confirmation = data.get("confirmation") or {}
        try:
            return PaymentCreated(
                id=data.get("id"),
                status=data.get("status"),
                confirmation_url=confirmation.get("confirmation_url"),
                metadata=data.get("metadata") or {},
            )
        except ValidationError as exc:
            raise PaymentGatewayError(
                "YooKassa payment response missing id/status.", code="YOOKASSA_SCHEMA_ERR"
            ) from exc

    async def __aenter__(self) -> YooKassaClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
