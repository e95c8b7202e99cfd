from __future__ import annotations

from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from app.api.endpoints.split_shipping import get_client_factory
from app.core.config import settings
from app.main import app
from app.split_shipping import errors

CSV = "firstName,lastName,streetNumber,streetName,city,state,zipCode,country,quantity\n" \
      "Ada,Lovelace,12,Baker St,London,,NW1,GB,2\n" \
      "Alan,Turing,3,Kings Rd,Manchester,,M1,GB,3\n"


@contextmanager
def _api(commerce):
    app.dependency_overrides[get_client_factory] = lambda: (lambda base_url=None: commerce.client())
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api(backend):
    with _api(backend) as client:
        yield client


@pytest.fixture
def split_api(split_backend):
    with _api(split_backend) as client:
        yield client


def _command(client: TestClient, payload: dict, cart_id: str = "cart-1") -> dict:
    resp = client.post(f"/split-shipping/flows/{cart_id}/commands", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(api: TestClient) -> None:
    resp = api.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert "X-Process-Time" in resp.headers


def test_create_flow_returns_camel_case_state(api: TestClient) -> None:
    resp = api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["cartId"] == "cart-1"
    assert body["cartShippingMode"] == "single"
    assert body["splitMode"] is False
    assert body["canUseSplitShipping"] is True
    assert body["remainingQuantities"] == {"li-1": 5}
    assert [m["id"] for m in body["shippingMethods"]] == ["standard", "express"]
    assert body["countries"] == ["DE", "US"]
    assert resp.headers["Cache-Control"] == "no-store"


def test_unknown_flow_is_404(api: TestClient) -> None:
    assert api.get("/split-shipping/flows/nope").status_code == 404
    assert api.post("/split-shipping/flows/nope/commands", json={"type": "wizard_next"}).status_code == 404


def test_allocation_commands_and_submit(api: TestClient, backend) -> None:
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    assert _command(api, {"type": "toggle_split_mode", "enter": True})["flow"]["step"] == "upload"
    _command(api, {"type": "wizard_next"})
    _command(api, {"type": "submit_review"})
    _command(api, {"type": "edit_destination", "index": 0, "address": {"country": "DE", "city": "Berlin"}})
    _command(api, {"type": "allocate_item", "index": 0, "lineItemId": "li-1", "quantity": 2})

    over = _command(api, {"type": "allocate_item", "index": 0, "lineItemId": "li-1", "quantity": 9})
    assert over["accepted"] is False
    assert over["issues"][0]["code"] == errors.OVER_ALLOCATION
    assert over["flow"]["remainingQuantities"] == {"li-1": 3}

    _command(api, {"type": "add_destination"})
    _command(api, {"type": "edit_destination", "index": 1, "address": {"country": "US", "city": "Austin"}})
    _command(api, {"type": "allocate_item", "index": 1, "lineItemId": "li-1", "quantity": 3})
    _command(api, {"type": "select_method", "index": 0, "shippingMethodId": "standard"})
    state = _command(api, {"type": "select_method", "index": 1, "shippingMethodId": "express"})["flow"]
    assert state["canSubmit"] is True
    assert [d["key"] for d in state["destinations"]] == ["address-0", "address-1"]

    resp = api.post("/split-shipping/flows/cart-1/submit")

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["lastSubmission"]["completedSteps"] == [
        "add-item-shipping-addresses", "add-shipping-methods", "line-item:li-1",
    ]
    assert body["cartVersion"] == backend.cart["version"] == 4
    assert body["cartShippingMode"] == "multiple"


def test_submit_with_open_issues_is_400(api: TestClient, backend) -> None:
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    resp = api.post("/split-shipping/flows/cart-1/submit")

    assert resp.status_code == 400
    assert backend.writes == []


def test_malformed_command_is_422(api: TestClient) -> None:
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    assert api.post("/split-shipping/flows/cart-1/commands", json={"type": "bogus"}).status_code == 422
    resp = api.post(
        "/split-shipping/flows/cart-1/commands",
        json={"type": "allocate_item", "index": -1, "lineItemId": "li-1", "quantity": 1},
    )
    assert resp.status_code == 422


def test_illegal_wizard_move_is_409(split_api: TestClient) -> None:
    body = split_api.post("/split-shipping/flows", json={"cartId": "cart-1"}).json()
    assert body["step"] == "allocate"

    resp = split_api.post("/split-shipping/flows/cart-1/commands", json={"type": "wizard_next"})

    assert resp.status_code == 409


def test_csv_upload_moves_to_review(api: TestClient) -> None:
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    resp = api.post(
        "/split-shipping/flows/cart-1/upload",
        files={"file": ("addresses.csv", CSV.encode(), "text/csv")},
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["splitMode"] is True
    assert body["step"] == "review"
    assert [(r["address"]["city"], r["quantity"]) for r in body["reviewRows"]] == [("London", 2), ("Manchester", 3)]

    state = _command(api, {"type": "submit_review"})["flow"]
    assert state["step"] == "allocate"
    assert state["remainingQuantities"] == {"li-1": 0}


def test_bad_csv_is_422(api: TestClient) -> None:
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    resp = api.post(
        "/split-shipping/flows/cart-1/upload",
        files={"file": ("addresses.csv", b"streetName,city\nMain St,Berlin\n", "text/csv")},
    )

    assert resp.status_code == 422
    assert "country" in resp.json()["detail"]


def test_upload_disabled_is_404(api: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "CSV_IMPORT_ENABLED", False)
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    resp = api.post(
        "/split-shipping/flows/cart-1/upload",
        files={"file": ("addresses.csv", CSV.encode(), "text/csv")},
    )

    assert resp.status_code == 404


def test_failed_submit_reports_steps(split_api: TestClient, split_backend) -> None:
    split_api.post("/split-shipping/flows", json={"cartId": "cart-1"})
    split_backend.fail_on = "add-shipping-methods"

    resp = split_api.post("/split-shipping/flows/cart-1/submit")

    assert resp.status_code == 502
    detail = resp.json()["detail"]
    assert detail["completedSteps"] == ["add-item-shipping-addresses"]
    assert detail["failedStep"] == "add-shipping-methods"
    state = split_api.get("/split-shipping/flows/cart-1").json()
    assert state["lastSubmission"]["failedStep"] == "add-shipping-methods"
    assert "backend exploded" in state["error"]
    assert state["loading"] is False


def test_stale_cart_conflicts_until_reloaded(split_api: TestClient, split_backend) -> None:
    split_api.post("/split-shipping/flows", json={"cartId": "cart-1"})
    # someone else wrote to the cart
    split_backend.cart["version"] += 1

    resp = split_api.post("/split-shipping/flows/cart-1/submit")
    assert resp.status_code == 409

    reloaded = split_api.post("/split-shipping/flows/cart-1/reload")
    assert reloaded.status_code == 200
    assert reloaded.json()["cartVersion"] == split_backend.cart["version"]
    assert split_api.post("/split-shipping/flows/cart-1/submit").status_code == 200


def test_delete_flow(api: TestClient) -> None:
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    assert api.delete("/split-shipping/flows/cart-1").status_code == 200
    assert api.get("/split-shipping/flows/cart-1").status_code == 404


def test_csv_quantity_over_limit_is_422(api: TestClient) -> None:
    api.post("/split-shipping/flows", json={"cartId": "cart-1"})

    resp = api.post(
        "/split-shipping/flows/cart-1/upload",
        files={"file": ("addresses.csv", b"streetName,city,country,quantity\nBaker St,London,GB,10000\n", "text/csv")},
    )

    assert resp.status_code == 422
    assert resp.json()["detail"].startswith("Line 2: quantity")
    assert api.get("/split-shipping/flows/cart-1").json()["splitMode"] is False


def test_upload_on_single_unit_cart_is_refused(payloads) -> None:
    commerce = payloads.backend(payloads.cart(line_items=[payloads.line_item("li-1", 1)]))
    with _api(commerce) as client:
        client.post("/split-shipping/flows", json={"cartId": "cart-1"})

        resp = client.post(
            "/split-shipping/flows/cart-1/upload",
            files={"file": ("addresses.csv", CSV.encode(), "text/csv")},
        )

        assert resp.status_code == 422
        state = client.get("/split-shipping/flows/cart-1").json()
        assert state["splitMode"] is False
        assert state["reviewRows"] == []
