"""
Wizard step controller: UPLOAD (optional) -> REVIEW -> ALLOCATE.

Moves only on explicit user actions. Forward moves are ``next`` and
``submit_review``; ``previous`` steps back one screen.
"""
import logging
from typing import Callable, List, Optional

from app.schemas.cart import Cart
from app.schemas.split_shipping import ReviewRow, WizardStep
from app.split_shipping.errors import InvalidTransitionError
from app.split_shipping.registry import Allocation, Destination

logger = logging.getLogger(__name__)


def initial_step(cart: Cart, csv_enabled: bool) -> WizardStep:
    # Resume an in-progress split
    if cart.item_shipping_addresses:
        return WizardStep.ALLOCATE
    return WizardStep.UPLOAD if csv_enabled else WizardStep.REVIEW


def cart_review_rows(cart: Cart, line_item_id: Optional[str]) -> List[ReviewRow]:
    """Rows for the addresses already registered on the cart."""
    line_item = cart.line_item(line_item_id) if line_item_id else None
    rows = []
    for address in cart.item_shipping_addresses:
        quantity = 0
        if line_item is not None:
            quantity = sum(t.quantity for t in line_item.targets if t.address_key == address.key)
        rows.append(ReviewRow(key=address.key, address=address, quantity=quantity))
    return rows


def merge_rows(cart_rows: List[ReviewRow], file_rows: List[ReviewRow]) -> List[ReviewRow]:
    """Cart-native rows first; file rows whose key already exists on the cart are dropped."""
    merged = list(cart_rows)
    seen = {r.key for r in cart_rows if r.key}
    for row in file_rows:
        if row.key and row.key in seen:
            logger.info(f"Import row {row.key} duplicates a cart address; keeping the cart's")
            continue
        if row.key:
            seen.add(row.key)
        merged.append(row)
    return merged


def rows_to_destinations(rows: List[ReviewRow], line_item_id: Optional[str]) -> List[Destination]:
    destinations = []
    for row in rows:
        address = row.address.model_copy(update={"key": row.key})
        destination = Destination(
            key=row.key,
            address=address,
            gift_message=address.additional_address_info or "",
        )
        if line_item_id and row.quantity > 0:
            destination.allocations.append(Allocation(line_item_id, row.quantity))
        destinations.append(destination)
    return destinations


class WizardController:
    def __init__(self, step: WizardStep, csv_enabled: bool, key_factory: Callable[[], str]):
        self.step = step
        self.csv_enabled = csv_enabled
        self.rows: List[ReviewRow] = []
        self._key_factory = key_factory

    def _require(self, *steps: WizardStep) -> None:
        if self.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise InvalidTransitionError(f"Action not available in step {self.step.value} (expected {allowed})")

    def _keyed(self, row: ReviewRow) -> ReviewRow:
        if row.key:
            return row
        return row.model_copy(update={"key": self._key_factory()})

    # ----- transitions -----
    def import_rows(self, file_rows: List[ReviewRow], cart_rows: List[ReviewRow]) -> None:
        """UPLOAD -> REVIEW once the CSV reader produced a row set."""
        self._require(WizardStep.UPLOAD)
        self.rows = merge_rows(cart_rows, [self._keyed(r) for r in file_rows])
        self.step = WizardStep.REVIEW
        logger.info(f"Imported {len(file_rows)} address rows ({len(self.rows)} total after merge)")

    def next(self, cart_rows: List[ReviewRow]) -> Optional[List[ReviewRow]]:
        """Advance one step. From REVIEW this is the table submission and returns its rows."""
        if self.step == WizardStep.UPLOAD:
            self.rows = list(cart_rows)
            self.step = WizardStep.REVIEW
            return None
        if self.step == WizardStep.REVIEW:
            return self.submit_review()
        raise InvalidTransitionError("Already at the last step")

    def submit_review(self) -> List[ReviewRow]:
        """REVIEW -> ALLOCATE, handing over the finalized rows."""
        self._require(WizardStep.REVIEW)
        self.step = WizardStep.ALLOCATE
        return list(self.rows)

    def previous(self, cart_rows: List[ReviewRow]) -> None:
        if self.step == WizardStep.ALLOCATE:
            if not self.rows:
                self.rows = list(cart_rows)
            self.step = WizardStep.REVIEW
            return
        if self.step == WizardStep.REVIEW and self.csv_enabled:
            self.step = WizardStep.UPLOAD
            return
        raise InvalidTransitionError(f"No previous step from {self.step.value}")

    # ----- table editing -----
    def add_row(self, row: ReviewRow) -> None:
        self._require(WizardStep.REVIEW)
        self.rows.append(self._keyed(row))

    def update_row(self, index: int, row: ReviewRow) -> None:
        self._require(WizardStep.REVIEW)
        if not 0 <= index < len(self.rows):
            raise InvalidTransitionError(f"No review row at position {index}")
        # the key is the join key and stays with the row
        self.rows[index] = row.model_copy(update={"key": self.rows[index].key})

    def remove_row(self, index: int) -> None:
        self._require(WizardStep.REVIEW)
        if not 0 <= index < len(self.rows):
            raise InvalidTransitionError(f"No review row at position {index}")
        del self.rows[index]
