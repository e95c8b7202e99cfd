from dataclasses import dataclass


@dataclass(frozen=True)
class ValidationIssue:
    """A local validation signal: blocks an action, never raised."""
    code: str
    message: str
    destination_key: str | None = None
    line_item_id: str | None = None


# Issue codes
OVER_ALLOCATION = "over_allocation"
NEGATIVE_QUANTITY = "negative_quantity"
UNKNOWN_LINE_ITEM = "unknown_line_item"
UNKNOWN_DESTINATION = "unknown_destination"
MISSING_COUNTRY = "missing_country"
MISSING_METHOD = "missing_delivery_method"
UNALLOCATED_UNITS = "unallocated_units"
NO_ALLOCATIONS = "no_allocations"
MISSING_ADDRESS = "missing_address"
NOT_IN_SPLIT_MODE = "not_in_split_mode"
PREVIOUS_DESTINATION_EMPTY = "previous_destination_empty"


class SplitShippingError(Exception):
    """Base error for the split-shipping engine"""


class LedgerUnderflowError(SplitShippingError):
    def __init__(self, line_item_id: str, remaining: int, delta: int):
        self.line_item_id = line_item_id
        self.remaining = remaining
        self.delta = delta
        super().__init__(
            f"Remaining quantity for line item {line_item_id} would become negative "
            f"(remaining={remaining}, delta={delta})"
        )


class UnknownLineItemError(SplitShippingError):
    def __init__(self, line_item_id: str):
        self.line_item_id = line_item_id
        super().__init__(f"Line item not found: {line_item_id}")


class InvalidTransitionError(SplitShippingError):
    pass


class FlowBusyError(SplitShippingError):
    """Raised when a flow is mutated or re-submitted while a submission is in flight."""


class CsvImportError(SplitShippingError):
    pass
