"""
Allocation mode selector: derives single vs. multi-address state from a cart snapshot.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.schemas.cart import Address, Cart
from app.schemas.split_shipping import ShippingMode
from app.split_shipping.registry import Allocation, Destination

logger = logging.getLogger(__name__)


def target_address_keys(cart: Cart) -> set:
    return {t.address_key for li in cart.line_items for t in li.targets}


def is_multi_address(cart: Cart) -> bool:
    """A cart ships to multiple addresses only when all three signals agree.

    Any one alone is not enough: a cart can hold two stored addresses and still
    route every unit to one of them.
    """
    has_multiple_addresses = len(cart.item_shipping_addresses) > 1
    has_multiple_shipping = len(cart.shipping) > 1
    has_multiple_targets = len(target_address_keys(cart)) > 1
    return has_multiple_addresses and has_multiple_shipping and has_multiple_targets


def shipping_mode(cart: Cart) -> ShippingMode:
    return ShippingMode.MULTIPLE if is_multi_address(cart) else ShippingMode.SINGLE


def can_use_split_shipping(cart: Cart) -> bool:
    return cart.total_quantity > 1


@dataclass
class SingleAddressState:
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    billing_same_as_shipping: bool = True
    shipping_method_id: str = ""


@dataclass
class ModeSelection:
    mode: ShippingMode
    single: SingleAddressState
    destinations: List[Destination] = field(default_factory=list)


def single_address_state(cart: Cart) -> SingleAddressState:
    state = SingleAddressState()
    if cart.shipping_address:
        state.shipping_address = cart.shipping_address.model_copy()
    if cart.billing_address:
        state.billing_address = cart.billing_address.model_copy()
        if cart.shipping_address:
            state.billing_same_as_shipping = cart.shipping_address.same_location(cart.billing_address)
    if cart.shipping_info and cart.shipping_info.shipping_method:
        state.shipping_method_id = cart.shipping_info.shipping_method.id
    return state


def reconstruct_destinations(cart: Cart) -> List[Destination]:
    """One destination per item-shipping address, filled with the stored line-item targets."""
    by_key: Dict[str, Destination] = {}
    for address in cart.item_shipping_addresses:
        if not address.key:
            logger.warning(f"Cart {cart.id} has an item shipping address without key; skipped")
            continue
        entry = next(
            (s for s in cart.shipping if s.shipping_address and s.shipping_address.key == address.key),
            None,
        )
        by_key[address.key] = Destination(
            key=address.key,
            address=address.model_copy(),
            shipping_method_id=(entry.method_id if entry else None) or "",
            shipping_key=(entry.shipping_key if entry else None) or address.key,
            gift_message=address.additional_address_info or "",
            delivery_selected=True,
        )

    for line_item in cart.line_items:
        for target in line_item.targets:
            destination = by_key.get(target.address_key)
            if destination is None:
                logger.warning(f"Line item {line_item.id} targets unknown address key {target.address_key}; skipped")
                continue
            if target.quantity <= 0:
                continue
            existing = destination.allocation_for(line_item.id)
            if existing:
                existing.quantity += target.quantity
            else:
                destination.allocations.append(Allocation(line_item.id, target.quantity))

    for destination in by_key.values():
        destination.is_preview = bool(destination.shipping_method_id)
    return list(by_key.values())


def select_mode(cart: Cart) -> ModeSelection:
    single = single_address_state(cart)
    if not is_multi_address(cart):
        return ModeSelection(mode=ShippingMode.SINGLE, single=single)
    destinations = reconstruct_destinations(cart)
    logger.info(f"Cart {cart.id} resumes split shipping with {len(destinations)} destinations")
    return ModeSelection(mode=ShippingMode.MULTIPLE, single=single, destinations=destinations)
