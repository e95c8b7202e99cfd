"""
Cart synchronization: publishes a finished allocation to the commerce backend.

The backend bumps the cart version on every write and rejects writes against a
stale version, so the steps run strictly one after another and each one is
handed the version returned by the previous call. There is no rollback: when a
step fails, the steps before it stay applied and the report says which ran.
"""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from app.schemas.cart import Address, Cart, MethodAssignment, ShippingTarget
from app.schemas.split_shipping import ShippingMode
from app.services.commerce import CommerceClient, CommerceError
from app.split_shipping.errors import SplitShippingError
from app.split_shipping.mode import SingleAddressState
from app.split_shipping.registry import Destination

logger = logging.getLogger(__name__)


@dataclass
class SubmissionReport:
    mode: ShippingMode
    cart: Cart
    completed_steps: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def cart_version(self) -> int:
        return self.cart.version


class SubmissionError(SplitShippingError):
    def __init__(self, report: SubmissionReport, cause: CommerceError):
        self.report = report
        self.cause = cause
        self.status_code = cause.status_code
        super().__init__(str(cause))


class _StepRunner:
    """Runs one write at a time, threading the cart (and its version) through."""

    def __init__(self, report: SubmissionReport):
        self.report = report

    @property
    def version(self) -> int:
        return self.report.cart.version

    async def run(self, name: str, write: Callable[[int], Awaitable[Cart]]) -> Cart:
        try:
            cart = await write(self.version)
        except CommerceError as e:
            self.report.failed_step = name
            self.report.error = str(e)
            logger.error(
                f"Submission step {name} failed after {len(self.report.completed_steps)} completed step(s): {e}"
            )
            raise SubmissionError(self.report, e) from e
        self.report.cart = cart
        self.report.completed_steps.append(name)
        logger.info(f"Submission step {name} ok (cart version {cart.version})")
        return cart


async def submit_single_address(client: CommerceClient, cart: Cart, state: SingleAddressState) -> SubmissionReport:
    """Ship every line item in full to one address."""
    if state.shipping_address is None:
        raise SplitShippingError("A shipping address is required")
    report = SubmissionReport(mode=ShippingMode.SINGLE, cart=cart)
    steps = _StepRunner(report)
    address = state.shipping_address
    address_key = address.key or ""
    shipping_key = address_key

    await steps.run(
        "set-shipping-address",
        lambda v: client.set_shipping_address(cart.id, v, address),
    )
    if not state.billing_same_as_shipping and state.billing_address is not None:
        await steps.run(
            "set-billing-address",
            lambda v: client.set_billing_address(cart.id, v, state.billing_address),
        )
    if state.shipping_method_id:
        await steps.run(
            "set-shipping-method",
            lambda v: client.set_shipping_method(cart.id, v, address, shipping_key, state.shipping_method_id),
        )
    for line_item in cart.line_items:
        targets = [
            ShippingTarget(
                address_key=address_key,
                quantity=line_item.quantity,
                shipping_method_key=shipping_key if state.shipping_method_id else None,
            )
        ]
        await steps.run(
            f"line-item:{line_item.id}",
            lambda v, li=line_item, t=targets: client.set_line_item_shipping_addresses(cart.id, v, li.id, t),
        )
    return report


def _changed_registered_addresses(cart: Cart, destinations: List[Destination]) -> List[Address]:
    registered = {a.key: a for a in cart.item_shipping_addresses if a.key}
    changed = []
    for d in destinations:
        stored = registered.get(d.key)
        if stored is None:
            continue
        wire = d.wire_address()
        if wire.to_wire() != stored.to_wire():
            changed.append(wire)
    return changed


def line_item_targets(destinations: List[Destination], line_item_id: str) -> List[ShippingTarget]:
    targets = []
    for d in destinations:
        quantity = d.quantity_for(line_item_id)
        if quantity > 0:
            targets.append(
                ShippingTarget(
                    address_key=d.key,
                    quantity=quantity,
                    shipping_method_key=d.shipping_key if d.shipping_method_id else None,
                )
            )
    return targets


async def submit_multi_address(client: CommerceClient, cart: Cart, destinations: List[Destination]) -> SubmissionReport:
    report = SubmissionReport(mode=ShippingMode.MULTIPLE, cart=cart)
    steps = _StepRunner(report)
    # address-less placeholders cannot be registered on the cart
    shippable = [d for d in destinations if d.has_country]
    skipped = [d.key for d in destinations if not d.has_country]
    if skipped:
        logger.info(f"Not registering address-less destinations: {', '.join(skipped)}")

    addresses = [d.wire_address() for d in shippable]
    if addresses:
        await steps.run(
            "add-item-shipping-addresses",
            lambda v: client.add_item_shipping_addresses(cart.id, v, addresses),
        )

    changed = _changed_registered_addresses(cart, shippable)
    if changed:
        await steps.run(
            "update-item-shipping-addresses",
            lambda v: client.update_item_shipping_addresses(cart.id, v, changed),
        )

    methods = [
        MethodAssignment(
            shipping_key=d.shipping_key,
            shipping_method_id=d.shipping_method_id,
            shipping_address=d.wire_address(),
        )
        for d in shippable
        if d.shipping_method_id
    ]
    if methods:
        await steps.run(
            "add-shipping-methods",
            lambda v: client.add_shipping_methods(cart.id, v, methods),
        )

    for line_item in cart.line_items:
        targets = line_item_targets(shippable, line_item.id)
        if not targets:
            continue
        await steps.run(
            f"line-item:{line_item.id}",
            lambda v, li=line_item, t=targets: client.set_line_item_shipping_addresses(cart.id, v, li.id, t),
        )
    return report
