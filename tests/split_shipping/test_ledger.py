from __future__ import annotations

import pytest

from app.split_shipping.errors import LedgerUnderflowError, UnknownLineItemError
from app.split_shipping.ledger import RemainingLedger
from app.split_shipping.registry import Allocation, Destination


def test_initialize_sets_full_quantities(make_cart, payloads) -> None:
    cart = make_cart(line_items=[payloads.line_item("a", 3), payloads.line_item("b", 1)])
    ledger = RemainingLedger(cart.line_items)

    assert ledger.snapshot() == {"a": 3, "b": 1}
    assert ledger.has_unallocated_units()


def test_adjust_claims_and_releases(make_cart) -> None:
    ledger = RemainingLedger(make_cart().line_items)

    assert ledger.adjust("li-1", -2) == 3
    assert ledger.adjust("li-1", 1) == 4
    assert ledger.remaining("li-1") == 4


def test_adjust_never_goes_negative(make_cart) -> None:
    ledger = RemainingLedger(make_cart().line_items)

    with pytest.raises(LedgerUnderflowError):
        ledger.adjust("li-1", -6)
    assert ledger.remaining("li-1") == 5


def test_adjust_unknown_line_item(make_cart) -> None:
    ledger = RemainingLedger(make_cart().line_items)
    with pytest.raises(UnknownLineItemError):
        ledger.adjust("missing", -1)


def test_recompute_subtracts_all_allocations_and_is_idempotent(make_cart, payloads) -> None:
    cart = make_cart(line_items=[payloads.line_item("a", 4), payloads.line_item("b", 2)])
    destinations = [
        Destination(key="x", allocations=[Allocation("a", 1), Allocation("b", 2)]),
        Destination(key="y", allocations=[Allocation("a", 2)]),
    ]
    ledger = RemainingLedger()

    ledger.recompute_from_destinations(destinations, cart.line_items)
    first = ledger.snapshot()
    ledger.recompute_from_destinations(destinations, cart.line_items)

    assert first == {"a": 1, "b": 0}
    assert ledger.snapshot() == first


def test_recompute_skips_unknown_items_and_clamps_over_allocation(make_cart) -> None:
    destinations = [
        Destination(key="x", allocations=[Allocation("li-1", 7), Allocation("ghost", 2)]),
    ]
    ledger = RemainingLedger()
    ledger.recompute_from_destinations(destinations, make_cart().line_items)

    assert ledger.snapshot() == {"li-1": 0}
    assert not ledger.has_unallocated_units()
