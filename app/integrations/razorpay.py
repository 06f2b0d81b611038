from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.core.exceptions import IntegrationError


def to_paise(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_paise(amount: int) -> float:
    return round(int(amount) / 100, 2)


class RazorpayClient:
    """Razorpay Orders/Refunds API client with signature helpers."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id or settings.razorpay_key_id
        self.key_secret = key_secret or (
            settings.razorpay_key_secret.get_secret_value() if settings.razorpay_key_secret else None
        )
        self.webhook_secret = webhook_secret or (
            settings.razorpay_webhook_secret.get_secret_value() if settings.razorpay_webhook_secret else None
        )
        self.base_url = (base_url or str(settings.razorpay_base_url)).rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise IntegrationError("Razorpay is not configured")
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret),
            headers={"Content-Type": "application/json"},
            timeout=20.0,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async with self._client() as client:
            try:
                response = await client.request(method, path, json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                error = {}
                try:
                    error = exc.response.json().get("error") or {}
                except ValueError:
                    pass
                raise IntegrationError(
                    f"Razorpay {method} {path} failed: {error.get('description') or exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise IntegrationError(f"Razorpay {method} {path} failed: {exc}") from exc
            return response.json()

    async def create_order(
        self, amount: float, receipt: str, notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        payload = {
            "amount": to_paise(amount),
            "currency": settings.currency,
            "receipt": receipt[:40],
            "notes": notes or {},
        }
        return await self._request("POST", "/orders", payload)

    async def fetch_order_payments(self, order_id: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/orders/{order_id}/payments")
        return data.get("items", [])

    async def refund_payment(
        self, payment_id: str, amount: float, notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        payload = {"amount": to_paise(amount), "speed": "normal", "notes": notes or {}}
        return await self._request("POST", f"/payments/{payment_id}/refund", payload)

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            raise IntegrationError("Razorpay is not configured")
        expected = hmac.new(
            self.key_secret.encode("utf-8"),
            f"{order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature or "")

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        if not self.webhook_secret:
            raise IntegrationError("Razorpay webhook secret is not configured")
        expected = hmac.new(self.webhook_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")


def get_payment_gateway() -> RazorpayClient:
    return RazorpayClient()
