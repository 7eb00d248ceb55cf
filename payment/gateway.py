# src/payment/gateway.py
import logging
from typing import Any, Dict, Optional

import requests
from fastapi import Request

from config import settings
from errors import ConfigurationError, GatewayError

logger = logging.getLogger(__name__)


class RazorpayClient:
    """Thin client for the Razorpay orders API.

    Built once at start-up and handed to the routes through ``get_gateway``.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.key_id = settings.RAZORPAY_KEY_ID if key_id is None else key_id
        self.key_secret = settings.RAZORPAY_KEY_SECRET if key_secret is None else key_secret
        self.api_base = (api_base or settings.RAZORPAY_API_BASE).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self.session = requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _request(self, method: str, path: str, json_payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.configured:
            raise ConfigurationError("Razorpay configuration missing. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.")
        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method=method.upper(),
                url=url,
                auth=(self.key_id, self.key_secret),
                json=json_payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error(f"Razorpay {method} {path} failed: {str(exc)}")
            raise GatewayError(f"Failed to contact Razorpay: {str(exc)}")

        if response.status_code >= 400:
            description = ""
            try:
                description = (response.json().get("error") or {}).get("description") or ""
            except ValueError:
                pass
            logger.error(f"Razorpay {method} {path} returned {response.status_code}: {response.text}")
            raise GatewayError(f"Payment error: {description}" if description else "Unable to process Razorpay request right now.")

        try:
            payload = response.json()
        except ValueError:
            raise GatewayError("Invalid response received from Razorpay.")
        if not isinstance(payload, dict):
            raise GatewayError("Unexpected response format from Razorpay.")
        return payload

    def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Create an order and return ``{"id", "amount", "currency", ...}``."""
        order = self._request(
            "POST",
            "/orders",
            json_payload={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "payment_capture": 1,
                "notes": notes or {},
            },
        )
        if not str(order.get("id") or "").strip():
            raise GatewayError("Razorpay order response is missing an id.")
        return order


def get_gateway(request: Request) -> RazorpayClient:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        gateway = RazorpayClient()
        request.app.state.gateway = gateway
    return gateway
