"""
Address/allocation registry for multi-address (split) shipping.

Each destination owns an address, the line-item quantities routed to it and an
optional delivery method. Every quantity change goes through
``set_item_allocation`` so the ledger moves in lock-step with the destinations.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from app.schemas.cart import Address
from app.split_shipping import errors
from app.split_shipping.errors import ValidationIssue
from app.split_shipping.ledger import RemainingLedger

logger = logging.getLogger(__name__)

KEY_PREFIX = "address-"


@dataclass
class Allocation:
    line_item_id: str
    quantity: int


@dataclass
class Destination:
    key: str
    address: Address = field(default_factory=Address)
    allocations: List[Allocation] = field(default_factory=list)
    shipping_method_id: str = ""
    gift_message: str = ""
    delivery_selected: bool = False
    is_preview: bool = False
    # Name of the delivery-method assignment on the cart. Defaults to the address key
    # but is its own identifier space.
    shipping_key: str = ""

    def __post_init__(self):
        if not self.shipping_key:
            self.shipping_key = self.key

    def allocation_for(self, line_item_id: str) -> Optional[Allocation]:
        return next((a for a in self.allocations if a.line_item_id == line_item_id), None)

    def quantity_for(self, line_item_id: str) -> int:
        allocation = self.allocation_for(line_item_id)
        return allocation.quantity if allocation else 0

    @property
    def total_units(self) -> int:
        return sum(a.quantity for a in self.allocations)

    @property
    def has_allocations(self) -> bool:
        return bool(self.allocations)

    @property
    def has_country(self) -> bool:
        return bool(self.address and self.address.country)

    def wire_address(self) -> Address:
        """The address as pushed to the cart: keyed, with the gift message as additional info."""
        data = self.address.model_dump(exclude_none=True)
        data["key"] = self.key
        data["additional_address_info"] = self.gift_message or None
        return Address(**data)


class DestinationRegistry:
    def __init__(self, ledger: RemainingLedger):
        self.ledger = ledger
        self.destinations: List[Destination] = []
        self._next_index = 0
        self._reserved_keys: Set[str] = set()

    # ----- keys -----
    def reserve_keys(self, keys: Iterable[str]) -> None:
        """Mark keys that already exist on the cart so generated keys never collide with them."""
        self._reserved_keys.update(k for k in keys if k)

    def next_key(self) -> str:
        """Generate ``address-<n>`` from a monotonic index; indexes are never reused."""
        in_use = self._reserved_keys | {d.key for d in self.destinations}
        while True:
            key = f"{KEY_PREFIX}{self._next_index}"
            self._next_index += 1
            if key not in in_use:
                self._reserved_keys.add(key)
                return key

    @property
    def next_index(self) -> int:
        return self._next_index

    # ----- lookup -----
    def get(self, index: int) -> Optional[Destination]:
        if 0 <= index < len(self.destinations):
            return self.destinations[index]
        return None

    def index_of(self, key: str) -> int:
        for i, d in enumerate(self.destinations):
            if d.key == key:
                return i
        return -1

    def _missing(self, index: int) -> ValidationIssue:
        return ValidationIssue(errors.UNKNOWN_DESTINATION, f"No destination at position {index}")

    # ----- mode -----
    def toggle_split_mode(self, enter: bool) -> None:
        if enter:
            self.ledger.reset()
            self.destinations = [Destination(key=self.next_key())]
            logger.info(f"Entered split mode with destination {self.destinations[0].key}")
        else:
            # Single address implicitly receives everything again
            self.destinations = []
            self.ledger.reset()
            logger.info("Left split mode")

    def load(self, destinations: List[Destination], line_items) -> None:
        """Replace all destinations (cart reconstruction, review submission) and rebuild the ledger."""
        self.destinations = list(destinations)
        self.reserve_keys(d.key for d in destinations)
        self.ledger.recompute_from_destinations(self.destinations, line_items)

    # ----- destinations -----
    def add_destination(self) -> Destination:
        destination = Destination(key=self.next_key())
        self.destinations.append(destination)
        return destination

    def remove_destination(self, index: int) -> Optional[ValidationIssue]:
        destination = self.get(index)
        if destination is None:
            return self._missing(index)
        del self.destinations[index]
        # a loaded cart may carry clamped over-allocation, so releasing by delta could overshoot
        self.ledger.rebuild(self.destinations)
        logger.info(f"Removed destination {destination.key}")
        return None

    def edit_destination(self, index: int, address: Address) -> Optional[ValidationIssue]:
        """Replace the address only; allocations stay as they are."""
        destination = self.get(index)
        if destination is None:
            return self._missing(index)
        destination.address = address.model_copy(update={"key": destination.key})
        destination.delivery_selected = False
        destination.is_preview = False
        return None

    def reopen(self, index: int) -> Optional[ValidationIssue]:
        destination = self.get(index)
        if destination is None:
            return self._missing(index)
        destination.delivery_selected = False
        destination.is_preview = False
        return None

    def continue_to_delivery(self, index: int) -> Optional[ValidationIssue]:
        destination = self.get(index)
        if destination is None:
            return self._missing(index)
        if not destination.has_allocations:
            return ValidationIssue(
                errors.NO_ALLOCATIONS, "Select at least one item for this address", destination.key
            )
        if not destination.has_country:
            return ValidationIssue(errors.MISSING_COUNTRY, "Country is required", destination.key)
        destination.delivery_selected = True
        return None

    def select_method(self, index: int, shipping_method_id: str) -> Optional[ValidationIssue]:
        destination = self.get(index)
        if destination is None:
            return self._missing(index)
        destination.shipping_method_id = shipping_method_id
        destination.is_preview = bool(shipping_method_id)
        return None

    def set_gift_message(self, index: int, message: str) -> Optional[ValidationIssue]:
        destination = self.get(index)
        if destination is None:
            return self._missing(index)
        destination.gift_message = message
        return None

    # ----- allocation -----
    def set_item_allocation(self, index: int, line_item_id: str, quantity: int) -> Optional[ValidationIssue]:
        destination = self.get(index)
        if destination is None:
            return self._missing(index)
        if not self.ledger.knows(line_item_id):
            return ValidationIssue(
                errors.UNKNOWN_LINE_ITEM, f"Line item not found: {line_item_id}", destination.key, line_item_id
            )
        if quantity < 0:
            return ValidationIssue(
                errors.NEGATIVE_QUANTITY, "Quantity cannot be negative", destination.key, line_item_id
            )

        existing = destination.allocation_for(line_item_id)
        current = existing.quantity if existing else 0
        delta = quantity - current
        remaining = self.ledger.remaining(line_item_id)
        if delta > 0 and delta > remaining:
            return ValidationIssue(
                errors.OVER_ALLOCATION,
                f"Requested quantity exceeds remaining (requested={quantity}, "
                f"available={current + remaining})",
                destination.key,
                line_item_id,
            )

        if quantity == 0:
            if existing:
                destination.allocations.remove(existing)
        elif existing:
            existing.quantity = quantity
        else:
            destination.allocations.append(Allocation(line_item_id, quantity))
        if delta:
            self.ledger.adjust(line_item_id, -delta)
        return None

    def allocated_quantity(self, line_item_id: str) -> int:
        return sum(d.quantity_for(line_item_id) for d in self.destinations)

    # ----- status -----
    @staticmethod
    def is_destination_complete(destination: Destination) -> bool:
        return destination.has_allocations and destination.has_country and bool(destination.shipping_method_id)

    def can_submit(self) -> bool:
        # Empty destinations may exist transiently and never block submission
        return all(d.shipping_method_id for d in self.destinations if d.has_allocations)

    def has_unallocated_units(self) -> bool:
        return self.ledger.has_unallocated_units()

    def submit_issues(self) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        if self.has_unallocated_units():
            issues.append(ValidationIssue(errors.UNALLOCATED_UNITS, "Some items are not assigned to an address"))
        for d in self.destinations:
            if not d.has_allocations:
                continue
            if not d.has_country:
                issues.append(ValidationIssue(errors.MISSING_COUNTRY, "Country is required", d.key))
            if not d.shipping_method_id:
                issues.append(ValidationIssue(errors.MISSING_METHOD, "Choose a delivery method", d.key))
        return issues
