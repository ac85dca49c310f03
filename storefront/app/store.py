"""
HTTP client for the order store.

Implements the remote store contract the rest of the storefront relies on:
insert, select one, select a page, update, plus receipt upload and the
payment-method lookup. Any requests-compatible session can be passed in.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)


class OrderStoreError(Exception):
    """The store could not be reached or answered with an unexpected status."""


class OrderConflictError(OrderStoreError):
    """The store refused a status change that breaks the order lifecycle."""


def _detail(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class OrderStoreClient:
    ORDERS_PATH = "/api/v1/orders"
    ORDER_PATH = "/api/v1/orders/{order_id}"
    RECEIPTS_PATH = "/api/v1/receipts"
    PAYMENT_METHODS_PATH = "/api/v1/payment-methods"

    def __init__(self, base_url: str, session=None, timeout: float = 8):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        url = self.base_url + path
        logger.debug("%s %s", method, url)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            raise OrderStoreError(f"{method} {path} failed: {e}") from e

    def _check(self, resp, ctx: str, expected=(200, 201)):
        if resp.status_code == 409:
            raise OrderConflictError(f"{ctx}: {_detail(resp)}")
        if resp.status_code not in expected:
            raise OrderStoreError(f"{ctx}: HTTP {resp.status_code}, {_detail(resp)}")
        try:
            return resp.json()
        except ValueError as e:
            raise OrderStoreError(f"{ctx}: response is not JSON") from e

    # --- Orders ---

    def insert(self, order: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._request("POST", self.ORDERS_PATH, json=order)
        return self._check(resp, "Create order")

    def select_one(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Returns the full order, or None when the store does not know it."""
        resp = self._request("GET", self.ORDER_PATH.format(order_id=order_id))
        if resp.status_code == 404:
            return None
        return self._check(resp, f"Get order {order_id}")

    def select_page(self, offset: int, limit: int, member_id: Optional[str] = None) -> Tuple[List[Dict[str, Any]], int]:
        params: Dict[str, Any] = {"offset": offset, "limit": limit}
        if member_id:
            params["member_id"] = member_id
        resp = self._request("GET", self.ORDERS_PATH, params=params)
        data = self._check(resp, "List orders")
        return data.get("orders", []), int(data.get("count", 0))

    def update(self, order_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._request("PATCH", self.ORDER_PATH.format(order_id=order_id), json=fields)
        return self._check(resp, f"Update order {order_id}")

    # --- Receipts / lookups ---

    def upload_receipt(self, content: bytes, filename: str, content_type: str = "image/jpeg") -> str:
        resp = self._request(
            "POST",
            self.RECEIPTS_PATH,
            files={"file": (filename, content, content_type)},
        )
        return self._check(resp, "Upload receipt")["url"]

    def list_payment_methods(self) -> List[Dict[str, Any]]:
        resp = self._request("GET", self.PAYMENT_METHODS_PATH)
        return self._check(resp, "List payment methods")
