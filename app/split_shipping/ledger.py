"""
Remaining-quantity ledger: units of each line item not yet routed to a destination.
"""
import logging
from typing import Dict, Iterable, Mapping

from app.schemas.cart import LineItem
from app.split_shipping.errors import LedgerUnderflowError, UnknownLineItemError

logger = logging.getLogger(__name__)


class RemainingLedger:
    def __init__(self, line_items: Iterable[LineItem] = ()):
        self._totals: Dict[str, int] = {}
        self._remaining: Dict[str, int] = {}
        self.initialize(line_items)

    def initialize(self, line_items: Iterable[LineItem]) -> None:
        """Reset every line item to its full quantity."""
        self._totals = {li.id: li.quantity for li in line_items}
        self._remaining = dict(self._totals)

    def reset(self) -> None:
        self._remaining = dict(self._totals)

    def remaining(self, line_item_id: str) -> int:
        if line_item_id not in self._remaining:
            raise UnknownLineItemError(line_item_id)
        return self._remaining[line_item_id]

    def total(self, line_item_id: str) -> int:
        if line_item_id not in self._totals:
            raise UnknownLineItemError(line_item_id)
        return self._totals[line_item_id]

    def knows(self, line_item_id: str) -> bool:
        return line_item_id in self._totals

    def adjust(self, line_item_id: str, delta: int) -> int:
        """Apply a signed change. Negative delta claims units, positive releases them."""
        current = self.remaining(line_item_id)
        updated = current + delta
        if updated < 0:
            raise LedgerUnderflowError(line_item_id, current, delta)
        self._remaining[line_item_id] = updated
        return updated

    def recompute_from_destinations(self, destinations, line_items: Iterable[LineItem]) -> None:
        """Rebuild from scratch: full quantities minus every current allocation.

        Safe to call repeatedly; the result only depends on its inputs.
        """
        self.initialize(line_items)
        self.rebuild(destinations)

    def rebuild(self, destinations) -> None:
        """Full quantities (as last initialized) minus every current allocation."""
        self.reset()
        for destination in destinations:
            for allocation in destination.allocations:
                if allocation.line_item_id not in self._remaining:
                    logger.warning(
                        f"Skipping allocation to unknown line item {allocation.line_item_id} "
                        f"on destination {destination.key}"
                    )
                    continue
                self._remaining[allocation.line_item_id] -= allocation.quantity
        for line_item_id, value in self._remaining.items():
            if value < 0:
                logger.warning(
                    f"Stored targets over-allocate line item {line_item_id} by {-value} units; "
                    "clamping remaining to 0"
                )
                self._remaining[line_item_id] = 0

    def has_unallocated_units(self) -> bool:
        return any(v > 0 for v in self._remaining.values())

    def snapshot(self) -> Mapping[str, int]:
        return dict(self._remaining)

    def __len__(self) -> int:
        return len(self._remaining)
