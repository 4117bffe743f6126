# backend/utils/payment_client.py
import hashlib
import hmac
import logging
import time
from typing import Dict, Optional
from urllib.parse import urljoin

import httpx

from config import settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """The gateway rejected the call or could not be reached."""


class PaymentClient:
    """Client for a Stripe-compatible payment intents API."""

    def __init__(self):
        self.api_url = settings.PAYMENT_API_URL
        self.secret_key = settings.PAYMENT_SECRET_KEY
        self.webhook_secret = settings.PAYMENT_WEBHOOK_SECRET
        self.timeout = settings.PAYMENT_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def _post(self, path: str, data: Dict[str, str]) -> dict:
        url = urljoin(self.api_url, path)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                # The API takes form-encoded bodies
                response = await client.post(url, data=data, headers=self._headers())
                response.raise_for_status()
                return response.json()
            except (httpx.RequestError, httpx.HTTPStatusError) as e:
                # Log gateway response body before re-raising
                try:
                    resp_text = e.response.text if getattr(e, "response", None) is not None else str(e)
                except Exception:
                    resp_text = str(e)
                logger.error("Payment gateway error on %s: %s", path, resp_text)
                raise PaymentGatewayError(str(e)) from e

    async def create_payment_intent(self, amount: int, currency: str, metadata: Optional[Dict[str, str]] = None) -> dict:
        """Create an intent for ``amount`` minor units; returns id, status, client_secret."""
        if not self.secret_key:
            raise PaymentGatewayError("Payment gateway is not configured")
        data = {"amount": str(amount), "currency": currency.lower()}
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)
        payload = await self._post("/v1/payment_intents", data)
        return {
            "id": payload.get("id"),
            "status": payload.get("status"),
            "client_secret": payload.get("client_secret"),
        }

    async def cancel_payment_intent(self, intent_id: str) -> None:
        await self._post(f"/v1/payment_intents/{intent_id}/cancel", {})

    def verify_signature(self, header_signature: Optional[str], body: bytes, tolerance: int = 300) -> bool:
        """Check a ``t=<ts>,v1=<hex>`` webhook signature (HMAC-SHA256 over ``t.body``)."""
        if not header_signature or not self.webhook_secret:
            return False
        timestamp = None
        signatures = []
        # Several v1 entries are sent while the signing secret is rotated
        for part in header_signature.split(","):
            key, sep, value = part.strip().partition("=")
            if not sep:
                continue
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)
        if timestamp is None or not signatures:
            return False
        try:
            issued_at = int(timestamp)
        except ValueError:
            return False

        if abs(time.time() - issued_at) > tolerance:
            return False

        signed = timestamp.encode("utf-8") + b"." + body
        expected = hmac.new(self.webhook_secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return any(hmac.compare_digest(expected, candidate) for candidate in signatures)


payment_client = PaymentClient()

def get_payment_client() -> PaymentClient:
    return payment_client
