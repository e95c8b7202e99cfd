"""
Checkout flow: one cart snapshot plus the state the shopper builds on top of it.

All mutations go through ``dispatch`` with a typed command; a submission locks
the flow until it finishes.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from app.schemas.cart import Address, Cart, ShippingMethod
from app.schemas.split_shipping import (
    AddDestination,
    AddReviewRow,
    AllocateItem,
    Command,
    ContinueToDelivery,
    EditDestination,
    RemoveDestination,
    RemoveReviewRow,
    ReviewRow,
    SelectMethod,
    SelectSingleMethod,
    SetBillingAddress,
    SetBillingSameAsShipping,
    SetGiftMessage,
    SetShippingAddress,
    ShippingMode,
    SubmitReview,
    ToggleSplitMode,
    UpdateReviewRow,
    WizardNext,
    WizardPrevious,
    WizardStep,
)
from app.services.commerce import CommerceClient, CommerceError
from app.split_shipping import errors
from app.split_shipping.errors import FlowBusyError, InvalidTransitionError, SplitShippingError, ValidationIssue
from app.split_shipping.ledger import RemainingLedger
from app.split_shipping.mode import (
    SingleAddressState,
    can_use_split_shipping,
    select_mode,
    shipping_mode,
)
from app.split_shipping.registry import DestinationRegistry
from app.split_shipping.sync import (
    SubmissionError,
    SubmissionReport,
    submit_multi_address,
    submit_single_address,
)
from app.split_shipping.wizard import (
    WizardController,
    cart_review_rows,
    initial_step,
    rows_to_destinations,
)

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    accepted: bool = True
    issues: List[ValidationIssue] = field(default_factory=list)

    @classmethod
    def from_issue(cls, issue: Optional[ValidationIssue]) -> "CommandResult":
        if issue is None:
            return cls()
        return cls(accepted=False, issues=[issue])


@dataclass
class ReferenceData:
    countries: List[str] = field(default_factory=list)
    shipping_methods: List[ShippingMethod] = field(default_factory=list)
    user_addresses: List[Address] = field(default_factory=list)


class CheckoutFlow:
    def __init__(
        self,
        cart: Cart,
        reference: Optional[ReferenceData] = None,
        csv_enabled: bool = True,
        line_item_id: Optional[str] = None,
        base_url: Optional[str] = None,
        locale: str = "en-US",
    ):
        self.reference = reference or ReferenceData()
        self.csv_enabled = csv_enabled
        self.base_url = base_url
        self.locale = locale
        self.loading = False
        self.error: Optional[str] = None
        self.last_submission: Optional[SubmissionReport] = None
        self.load_cart(cart, line_item_id)

    # ----- lifecycle -----
    def load_cart(self, cart: Cart, line_item_id: Optional[str] = None) -> None:
        """Derive all state from a fresh snapshot. Previous state is dropped, not merged."""
        self._ensure_idle()
        self.cart = cart
        if line_item_id is None and len(cart.line_items) == 1:
            line_item_id = cart.line_items[0].id
        if line_item_id and cart.line_item(line_item_id) is None:
            logger.warning(f"Line item {line_item_id} not in cart {cart.id}; address table will not allocate")
            line_item_id = None
        self.line_item_id = line_item_id

        self.ledger = RemainingLedger(cart.line_items)
        self.registry = DestinationRegistry(self.ledger)
        self.registry.reserve_keys(a.key for a in cart.item_shipping_addresses)

        selection = select_mode(cart)
        self.single: SingleAddressState = selection.single
        self.split_mode = selection.mode == ShippingMode.MULTIPLE
        if self.split_mode:
            self.registry.load(selection.destinations, cart.line_items)

        self.wizard = WizardController(
            initial_step(cart, self.csv_enabled), self.csv_enabled, self.registry.next_key
        )
        if self.wizard.step == WizardStep.REVIEW:
            self.wizard.rows = self._cart_rows()
        logger.info(f"Flow for cart {cart.id} (version {cart.version}) loaded in {selection.mode.value} mode")

    @property
    def cart_id(self) -> str:
        return self.cart.id

    @property
    def cart_shipping_mode(self) -> ShippingMode:
        return shipping_mode(self.cart)

    @property
    def can_use_split_shipping(self) -> bool:
        return can_use_split_shipping(self.cart)

    def _cart_rows(self) -> List[ReviewRow]:
        return cart_review_rows(self.cart, self.line_item_id)

    def _ensure_idle(self) -> None:
        if self.loading:
            raise FlowBusyError(f"Cart {self.cart_id} is being submitted")

    # ----- dispatch -----
    def dispatch(self, command: Command) -> CommandResult:
        self._ensure_idle()
        handler = self._handlers().get(type(command))
        if handler is None:
            raise SplitShippingError(f"Unsupported command: {type(command).__name__}")
        result = handler(command)
        logger.debug(f"Command {command.type} accepted={result.accepted}")
        return result

    def _handlers(self) -> Dict[type, Callable[..., CommandResult]]:
        return {
            SetShippingAddress: self._set_shipping_address,
            SetBillingAddress: self._set_billing_address,
            SetBillingSameAsShipping: self._set_billing_same,
            SelectSingleMethod: self._select_single_method,
            ToggleSplitMode: self._toggle_split_mode,
            AddDestination: self._add_destination,
            RemoveDestination: lambda c: self._in_split(lambda: self.registry.remove_destination(c.index)),
            EditDestination: self._edit_destination,
            AllocateItem: lambda c: self._in_split(
                lambda: self.registry.set_item_allocation(c.index, c.line_item_id, c.quantity)
            ),
            SelectMethod: lambda c: self._in_split(lambda: self.registry.select_method(c.index, c.shipping_method_id)),
            SetGiftMessage: lambda c: self._in_split(lambda: self.registry.set_gift_message(c.index, c.message)),
            ContinueToDelivery: lambda c: self._in_split(lambda: self.registry.continue_to_delivery(c.index)),
            WizardNext: self._wizard_next,
            WizardPrevious: self._wizard_previous,
            AddReviewRow: lambda c: self._review(lambda: self.wizard.add_row(c.row)),
            UpdateReviewRow: lambda c: self._review(lambda: self.wizard.update_row(c.index, c.row)),
            RemoveReviewRow: lambda c: self._review(lambda: self.wizard.remove_row(c.index)),
            SubmitReview: lambda c: self._submit_review(),
        }

    def _in_split(self, action: Callable[[], Optional[ValidationIssue]]) -> CommandResult:
        if not self.split_mode:
            return CommandResult.from_issue(
                ValidationIssue(errors.NOT_IN_SPLIT_MODE, "Split shipping is not active")
            )
        return CommandResult.from_issue(action())

    def _review(self, action: Callable[[], None]) -> CommandResult:
        if not self.split_mode:
            return CommandResult.from_issue(
                ValidationIssue(errors.NOT_IN_SPLIT_MODE, "Split shipping is not active")
            )
        action()
        return CommandResult()

    # ----- single address -----
    def _set_shipping_address(self, command: SetShippingAddress) -> CommandResult:
        address = command.address
        if not address.key:
            previous_key = self.single.shipping_address.key if self.single.shipping_address else None
            address = address.model_copy(update={"key": previous_key or self.registry.next_key()})
        self.single.shipping_address = address
        return CommandResult()

    def _set_billing_address(self, command: SetBillingAddress) -> CommandResult:
        self.single.billing_address = command.address
        self.single.billing_same_as_shipping = False
        return CommandResult()

    def _set_billing_same(self, command: SetBillingSameAsShipping) -> CommandResult:
        self.single.billing_same_as_shipping = command.same
        return CommandResult()

    def _select_single_method(self, command: SelectSingleMethod) -> CommandResult:
        self.single.shipping_method_id = command.shipping_method_id
        return CommandResult()

    # ----- split mode -----
    def _toggle_split_mode(self, command: ToggleSplitMode) -> CommandResult:
        if command.enter == self.split_mode:
            return CommandResult()
        if command.enter and not self.can_use_split_shipping:
            return CommandResult.from_issue(
                ValidationIssue(errors.NO_ALLOCATIONS, "Split shipping needs more than one unit in the cart")
            )
        self.registry.toggle_split_mode(command.enter)
        self.split_mode = command.enter
        if command.enter:
            self.wizard = WizardController(
                initial_step(self.cart, self.csv_enabled), self.csv_enabled, self.registry.next_key
            )
            if self.wizard.step == WizardStep.REVIEW:
                self.wizard.rows = self._cart_rows()
        return CommandResult()

    def _add_destination(self, command: AddDestination) -> CommandResult:
        if not self.split_mode:
            return CommandResult.from_issue(
                ValidationIssue(errors.NOT_IN_SPLIT_MODE, "Split shipping is not active")
            )
        last = self.registry.destinations[-1] if self.registry.destinations else None
        if last is not None and not last.has_allocations:
            return CommandResult.from_issue(
                ValidationIssue(
                    errors.PREVIOUS_DESTINATION_EMPTY,
                    "Assign items to the current address before adding another",
                    last.key,
                )
            )
        self.registry.add_destination()
        return CommandResult()

    def _edit_destination(self, command: EditDestination) -> CommandResult:
        def action():
            if command.address is None:
                return self.registry.reopen(command.index)
            return self.registry.edit_destination(command.index, command.address)
        return self._in_split(action)

    # ----- wizard -----
    def _wizard_next(self, command: WizardNext) -> CommandResult:
        if self.wizard.step == WizardStep.REVIEW:
            return self._submit_review()
        self.wizard.next(self._cart_rows())
        return CommandResult()

    def _wizard_previous(self, command: WizardPrevious) -> CommandResult:
        self.wizard.previous(self._cart_rows())
        return CommandResult()

    def import_rows(self, rows: List[ReviewRow]) -> None:
        """UPLOAD -> REVIEW with the rows read from a CSV file."""
        self._ensure_idle()
        if self.split_mode:
            self.wizard.import_rows(rows, self._cart_rows())
            return
        # nothing may change unless the import can actually land in REVIEW
        step = initial_step(self.cart, self.csv_enabled)
        if step != WizardStep.UPLOAD:
            raise InvalidTransitionError(f"Address import is not available in step {step.value}")
        result = self._toggle_split_mode(ToggleSplitMode(enter=True))
        if not result.accepted:
            raise SplitShippingError(result.issues[0].message)
        self.wizard.import_rows(rows, self._cart_rows())

    def _review_issues(self, rows: List[ReviewRow]) -> List[ValidationIssue]:
        issues = []
        for row in rows:
            if not row.address.country:
                issues.append(ValidationIssue(errors.MISSING_COUNTRY, "Country is required", row.key))
        if self.line_item_id:
            requested = sum(r.quantity for r in rows)
            available = self.ledger.total(self.line_item_id)
            if requested > available:
                issues.append(
                    ValidationIssue(
                        errors.OVER_ALLOCATION,
                        f"Rows request {requested} units but the item has {available}",
                        line_item_id=self.line_item_id,
                    )
                )
        return issues

    def _submit_review(self) -> CommandResult:
        if not self.split_mode:
            return CommandResult.from_issue(
                ValidationIssue(errors.NOT_IN_SPLIT_MODE, "Split shipping is not active")
            )
        if self.wizard.step != WizardStep.REVIEW:
            # let the wizard raise the transition error
            self.wizard.submit_review()
        issues = self._review_issues(self.wizard.rows)
        if issues:
            return CommandResult(accepted=False, issues=issues)
        rows = self.wizard.submit_review()
        if rows:
            self.registry.load(rows_to_destinations(rows, self.line_item_id), self.cart.line_items)
        return CommandResult()

    # ----- status -----
    def submit_issues(self) -> List[ValidationIssue]:
        if self.split_mode:
            return self.registry.submit_issues()
        issues = []
        address = self.single.shipping_address
        if address is None:
            issues.append(ValidationIssue(errors.MISSING_ADDRESS, "A shipping address is required"))
        elif not address.country:
            issues.append(ValidationIssue(errors.MISSING_COUNTRY, "Country is required", address.key))
        return issues

    def can_submit(self) -> bool:
        return not self.submit_issues()

    # ----- submission -----
    async def submit(self, client: CommerceClient) -> SubmissionReport:
        """Publish the current allocation. Raises FlowBusyError on re-entry."""
        self._ensure_idle()
        issues = self.submit_issues()
        if issues:
            raise SplitShippingError("; ".join(i.message for i in issues))
        self.loading = True
        self.error = None
        try:
            if self.split_mode:
                report = await submit_multi_address(client, self.cart, self.registry.destinations)
            else:
                report = await submit_single_address(client, self.cart, self.single)
        except SubmissionError as e:
            self.error = str(e)
            self.last_submission = e.report
            self.cart = e.report.cart
            raise
        except CommerceError as e:
            self.error = str(e)
            raise
        finally:
            self.loading = False
        self.last_submission = report
        self.cart = report.cart
        logger.info(
            f"Cart {self.cart_id} submitted in {report.mode.value} mode "
            f"({len(report.completed_steps)} steps, version {report.cart_version})"
        )
        return report
