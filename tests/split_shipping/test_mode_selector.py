from __future__ import annotations

from app.schemas.cart import Cart
from app.schemas.split_shipping import ShippingMode
from app.split_shipping.mode import (
    can_use_split_shipping,
    is_multi_address,
    reconstruct_destinations,
    select_mode,
)


def test_split_cart_is_multi_address(split_cart: Cart) -> None:
    assert is_multi_address(split_cart)
    assert select_mode(split_cart).mode == ShippingMode.MULTIPLE


def test_two_addresses_but_one_target_is_single(payloads) -> None:
    cart = Cart.model_validate(payloads.cart(
        line_items=[payloads.line_item("li-1", 5, targets=[("home", 5)])],
        item_shipping_addresses=[payloads.address("home"), payloads.address("office")],
        shipping=[payloads.shipping_entry("home", "standard"), payloads.shipping_entry("office", "standard")],
    ))

    assert not is_multi_address(cart)
    selection = select_mode(cart)
    assert selection.mode == ShippingMode.SINGLE
    assert selection.destinations == []


def test_each_signal_alone_is_not_enough(payloads) -> None:
    targets = [("home", 2), ("office", 3)]
    only_targets = Cart.model_validate(payloads.cart(
        line_items=[payloads.line_item("li-1", 5, targets=targets)],
        item_shipping_addresses=[payloads.address("home"), payloads.address("office")],
        shipping=[payloads.shipping_entry("home", "standard")],
    ))
    assert not is_multi_address(only_targets)

    one_address = Cart.model_validate(payloads.cart(
        line_items=[payloads.line_item("li-1", 5, targets=targets)],
        item_shipping_addresses=[payloads.address("home")],
        shipping=[payloads.shipping_entry("home", "standard"), payloads.shipping_entry("office", "standard")],
    ))
    assert not is_multi_address(one_address)


def test_reconstruct_matches_methods_and_targets(split_cart: Cart) -> None:
    destinations = {d.key: d for d in reconstruct_destinations(split_cart)}

    home, office = destinations["home"], destinations["office"]
    assert home.shipping_method_id == "standard"
    assert office.shipping_method_id == "express"
    assert home.quantity_for("li-1") == 2 and home.quantity_for("li-2") == 1
    assert office.quantity_for("li-1") == 3
    assert office.gift_message == "Happy birthday"
    assert home.delivery_selected and home.is_preview


def test_dangling_target_is_skipped(payloads) -> None:
    cart = Cart.model_validate(payloads.cart(
        line_items=[payloads.line_item("li-1", 5, targets=[("home", 2), ("office", 2), ("gone", 1)])],
        item_shipping_addresses=[payloads.address("home"), payloads.address("office")],
        shipping=[payloads.shipping_entry("home", "standard"), payloads.shipping_entry("office", "express")],
    ))

    selection = select_mode(cart)

    assert selection.mode == ShippingMode.MULTIPLE
    assert sorted(d.key for d in selection.destinations) == ["home", "office"]
    assert sum(d.quantity_for("li-1") for d in selection.destinations) == 4


def test_single_address_fields_come_from_cart(payloads) -> None:
    shipping = payloads.address("ship")
    billing = payloads.address(None, street="Other St")
    cart = Cart.model_validate(payloads.cart(
        shippingAddress=shipping,
        billingAddress=billing,
        shippingInfo={"shippingMethod": {"id": "standard", "name": "Standard"}},
    ))

    state = select_mode(cart).single

    assert state.shipping_address.key == "ship"
    assert not state.billing_same_as_shipping
    assert state.shipping_method_id == "standard"


def test_billing_same_when_location_matches(payloads) -> None:
    cart = Cart.model_validate(payloads.cart(
        shippingAddress=payloads.address("ship"),
        billingAddress=payloads.address(None, firstName="Different name"),
    ))

    assert select_mode(cart).single.billing_same_as_shipping


def test_split_offered_only_for_more_than_one_unit(payloads) -> None:
    assert not can_use_split_shipping(Cart.model_validate(payloads.cart(line_items=[payloads.line_item("a", 1)])))
    assert can_use_split_shipping(Cart.model_validate(payloads.cart(
        line_items=[payloads.line_item("a", 1), payloads.line_item("b", 1)]
    )))
