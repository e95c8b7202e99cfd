from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from app.schemas.cart import Cart
from app.services.commerce import CommerceClient

BASE_URL = "http://commerce.test"


def address(key: str | None, country: str = "DE", city: str = "Berlin", street: str = "Main St", **extra: Any) -> dict:
    data = {"country": country, "city": city, "streetName": street, "streetNumber": "1", "postalCode": "10115"}
    if key is not None:
        data["key"] = key
    data.update(extra)
    return data


def line_item(item_id: str, quantity: int, targets: list[tuple[str, int]] | None = None, sku: str = "SKU") -> dict:
    data: dict[str, Any] = {
        "id": item_id,
        "productId": f"prod-{item_id}",
        "name": {"en-US": f"Item {item_id}"},
        "variant": {"sku": f"{sku}-{item_id}"},
        "quantity": quantity,
    }
    if targets is not None:
        data["shippingDetails"] = {
            "targets": [{"addressKey": k, "quantity": q, "shippingMethodKey": k} for k, q in targets]
        }
    return data


def shipping_entry(key: str, method_id: str) -> dict:
    return {
        "shippingKey": key,
        "shippingAddress": address(key),
        "shippingInfo": {"shippingMethod": {"id": method_id, "name": method_id.title()}},
    }


def cart_payload(
    line_items: list[dict] | None = None,
    version: int = 1,
    item_shipping_addresses: list[dict] | None = None,
    shipping: list[dict] | None = None,
    **extra: Any,
) -> dict:
    data: dict[str, Any] = {
        "id": "cart-1",
        "version": version,
        "lineItems": line_items if line_items is not None else [line_item("li-1", 5)],
        "itemShippingAddresses": item_shipping_addresses or [],
        "shipping": shipping or [],
    }
    data.update(extra)
    return data


def split_cart_payload() -> dict:
    """A cart already split across two addresses with methods."""
    return cart_payload(
        line_items=[
            line_item("li-1", 5, targets=[("home", 2), ("office", 3)]),
            line_item("li-2", 1, targets=[("home", 1)]),
        ],
        item_shipping_addresses=[address("home"), address("office", city="Hamburg", additionalAddressInfo="Happy birthday")],
        shipping=[shipping_entry("home", "standard"), shipping_entry("office", "express")],
        version=7,
    )


class FakeCommerceBackend:
    """In-memory stand-in for the commerce proxy, enforcing cart versions on writes."""

    def __init__(self, cart: dict, countries: list[str] | None = None, methods: list[dict] | None = None):
        self.cart = cart
        self.countries = countries or ["DE", "US"]
        self.methods = methods or [{"id": "standard", "name": "Standard"}, {"id": "express", "name": "Express"}]
        self.user_addresses = [address("saved-1")]
        self.calls: list[tuple[str, str, Any, str | None]] = []
        self.fail_on: str | None = None
        self.fail_status = 500

    @property
    def writes(self) -> list[tuple[str, str, Any, str | None]]:
        return [c for c in self.calls if c[0] != "GET"]

    def client(self, handler=None) -> CommerceClient:
        return CommerceClient(base_url=BASE_URL, transport=httpx.MockTransport(handler or self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        if_match = request.headers.get("if-match")
        self.calls.append((request.method, path, body, if_match))

        if self.fail_on and self.fail_on in path:
            return httpx.Response(self.fail_status, json={"error": "backend exploded"})

        if request.method == "GET":
            if path == "/get-project-settings":
                return httpx.Response(200, json={"countries": self.countries, "currencies": ["EUR"]})
            if path == "/shipping-methods":
                return httpx.Response(200, json=self.methods)
            if path.startswith("/account/"):
                return httpx.Response(200, json=self.user_addresses)
            if path == f"/carts/{self.cart['id']}":
                return httpx.Response(200, json=self.cart)
            return httpx.Response(404, json={"error": "not found"})

        if if_match != str(self.cart["version"]):
            return httpx.Response(409, json={"error": "version mismatch"})

        action = path.split(f"/carts/{self.cart['id']}/", 1)[-1]
        if action == "set-shipping-address":
            self.cart["shippingAddress"] = body["address"]
        elif action == "set-billing-address":
            self.cart["billingAddress"] = body["address"]
        elif action == "add-item-shipping-addresses":
            existing = {a.get("key") for a in self.cart["itemShippingAddresses"]}
            self.cart["itemShippingAddresses"].extend(a for a in body["addresses"] if a.get("key") not in existing)
        elif action == "update-item-shipping-addresses":
            updated = {a["key"]: a for a in body["addresses"]}
            self.cart["itemShippingAddresses"] = [
                updated.get(a.get("key"), a) for a in self.cart["itemShippingAddresses"]
            ]
        elif action == "add-shipping-methods":
            for m in body["methods"]:
                self.cart["shipping"].append({
                    "shippingKey": m["shippingKey"],
                    "shippingAddress": m["shippingAddress"],
                    "shippingInfo": {"shippingMethod": {"id": m["shippingMethodId"]}},
                })
        elif action == "set-shipping-method":
            self.cart["shippingInfo"] = {"shippingMethod": {"id": body["shippingMethodId"]}}
        elif action.startswith("line-items/"):
            item_id = action.split("/")[1]
            for li in self.cart["lineItems"]:
                if li["id"] == item_id:
                    li["shippingDetails"] = {"targets": body["targets"]}
        else:
            return httpx.Response(404, json={"error": f"unknown action {action}"})

        self.cart["version"] += 1
        return httpx.Response(200, json=self.cart)


@pytest.fixture
def make_cart():
    def _make(**kwargs: Any) -> Cart:
        return Cart.model_validate(cart_payload(**kwargs))
    return _make


@pytest.fixture
def split_cart() -> Cart:
    return Cart.model_validate(split_cart_payload())


@pytest.fixture
def backend() -> FakeCommerceBackend:
    return FakeCommerceBackend(cart_payload())


@pytest.fixture
def split_backend() -> FakeCommerceBackend:
    return FakeCommerceBackend(split_cart_payload())


@pytest.fixture
def payloads() -> SimpleNamespace:
    """Wire-format builders for carts, line items and addresses."""
    return SimpleNamespace(
        address=address,
        line_item=line_item,
        shipping_entry=shipping_entry,
        cart=cart_payload,
        split_cart=split_cart_payload,
        backend=FakeCommerceBackend,
    )
