"""
Thin Gelato order API client.

Only the three calls fulfillment needs: create an order, read it back, and
cancel it. Payload construction lives in the print provider.
"""
import logging

import requests

from config import GELATO_API_KEY, GELATO_ORDER_API_URL, GELATO_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class GelatoApiError(Exception):
    """Non-2xx answer (or unusable body) from the Gelato API."""
    def __init__(self, message, status_code=None, body=None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class GelatoClient:
    def __init__(self, api_key=None, base_url=None, timeout=None, session=None):
        self.api_key = api_key if api_key is not None else GELATO_API_KEY
        self.base_url = (base_url or GELATO_ORDER_API_URL).rstrip("/")
        self.timeout = timeout or GELATO_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _request(self, method, path, payload=None):
        if not self.api_key:
            raise GelatoApiError("Gelato API key not configured")

        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers={
                "X-API-KEY": self.api_key,
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )

        if response.status_code >= 400:
            body = response.text[:500]
            logger.error(f"[Gelato] {method} {path} failed: HTTP {response.status_code}")
            raise GelatoApiError(
                f"Gelato API error {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise GelatoApiError(f"Gelato API returned non-JSON body for {method} {path}",
                                 status_code=response.status_code)

    def create_order(self, payload):
        """Create a print order. Returns Gelato's order id."""
        data = self._request("POST", "/v4/orders", payload)
        order_id = data.get("id")
        logger.info(f"[Gelato] Created order {order_id} (reference {payload.get('orderReferenceId')})")
        return order_id

    def get_order(self, gelato_order_id):
        return self._request("GET", f"/v4/orders/{gelato_order_id}")

    def cancel_order(self, gelato_order_id):
        self._request("POST", f"/v4/orders/{gelato_order_id}:cancel")
        return True
