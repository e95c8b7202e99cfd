"""
Async client for the commerce backend proxy (carts, shipping methods, project settings).

Cart writes are optimistic-concurrency writes: every mutating call takes the
cart version the caller last saw and returns the updated cart, whose version
must be used for the next write.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.schemas.cart import Address, Cart, MethodAssignment, ProjectSettings, ShippingMethod, ShippingTarget

logger = logging.getLogger(__name__)


class CommerceError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class CommerceConflictError(CommerceError):
    """The backend rejected a write against a stale cart version."""


def _error_message(resp: httpx.Response, action: str) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    detail = None
    if isinstance(data, dict):
        detail = data.get("error") or data.get("message") or data.get("detail")
    return f"Failed to {action}: {detail or resp.reason_phrase or resp.status_code}"


class CommerceClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.COMMERCE_API_BASE).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.COMMERCE_TIMEOUT_SEC,
            trust_env=True,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CommerceClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        body: Optional[Dict[str, Any]] = None,
        version: Optional[int] = None,
    ) -> Any:
        headers = {}
        if version is not None:
            headers["If-Match"] = str(version)
        logger.info(f"[commerce] {method} {self.base_url}{path}")
        try:
            resp = await self._client.request(method, path, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise CommerceError(f"Failed to {action}: {e}") from e
        if resp.status_code in (409, 412):
            raise CommerceConflictError(_error_message(resp, action), resp.status_code)
        if resp.status_code >= 400:
            raise CommerceError(_error_message(resp, action), resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise CommerceError(f"Failed to {action}: invalid JSON response", resp.status_code) from e

    async def _cart_write(self, method: str, path: str, action: str, body: Dict[str, Any], version: int) -> Cart:
        data = await self._request(method, path, action, body=body, version=version)
        cart = Cart.model_validate(data)
        logger.debug(f"[commerce] {action} -> cart {cart.id} version {cart.version}")
        return cart

    # ----- reads -----
    async def get_cart(self, cart_id: str) -> Cart:
        data = await self._request("GET", f"/carts/{cart_id}", "fetch cart")
        return Cart.model_validate(data)

    async def get_shipping_methods(self) -> List[ShippingMethod]:
        data = await self._request("GET", "/shipping-methods", "fetch shipping methods")
        return [ShippingMethod.model_validate(m) for m in data or []]

    async def get_project_settings(self) -> ProjectSettings:
        data = await self._request("GET", "/get-project-settings", "fetch project settings")
        return ProjectSettings.model_validate(data or {})

    async def get_user_addresses(self, user_id: str) -> List[Address]:
        data = await self._request("GET", f"/account/{user_id}/addresses", "fetch user addresses")
        return [Address.model_validate(a) for a in data or []]

    # ----- cart writes -----
    async def set_shipping_address(self, cart_id: str, version: int, address: Address) -> Cart:
        return await self._cart_write(
            "POST", f"/carts/{cart_id}/set-shipping-address", "set shipping address",
            {"address": address.to_wire()}, version,
        )

    async def set_billing_address(self, cart_id: str, version: int, address: Address) -> Cart:
        return await self._cart_write(
            "POST", f"/carts/{cart_id}/set-billing-address", "set billing address",
            {"address": address.to_wire()}, version,
        )

    async def add_item_shipping_addresses(self, cart_id: str, version: int, addresses: List[Address]) -> Cart:
        return await self._cart_write(
            "POST", f"/carts/{cart_id}/add-item-shipping-addresses", "add item shipping addresses",
            {"addresses": [a.to_wire() for a in addresses]}, version,
        )

    async def update_item_shipping_addresses(self, cart_id: str, version: int, addresses: List[Address]) -> Cart:
        return await self._cart_write(
            "PUT", f"/carts/{cart_id}/update-item-shipping-addresses", "update item shipping addresses",
            {"addresses": [a.to_wire() for a in addresses]}, version,
        )

    async def add_shipping_methods(self, cart_id: str, version: int, methods: List[MethodAssignment]) -> Cart:
        return await self._cart_write(
            "POST", f"/carts/{cart_id}/add-shipping-methods", "add shipping methods",
            {"methods": [m.to_wire() for m in methods]}, version,
        )

    async def set_shipping_method(
        self, cart_id: str, version: int, shipping_address: Address, shipping_key: str, shipping_method_id: str
    ) -> Cart:
        body = {
            "shippingAddress": shipping_address.to_wire(),
            "shippingKey": shipping_key,
            "shippingMethodId": shipping_method_id,
        }
        return await self._cart_write("POST", f"/carts/{cart_id}/set-shipping-method", "set shipping method", body, version)

    async def set_line_item_shipping_addresses(
        self, cart_id: str, version: int, line_item_id: str, targets: List[ShippingTarget]
    ) -> Cart:
        return await self._cart_write(
            "POST", f"/carts/{cart_id}/line-items/{line_item_id}/shipping-addresses",
            "set line item shipping addresses",
            {"targets": [t.to_wire() for t in targets]}, version,
        )
