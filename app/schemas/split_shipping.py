from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from app.schemas.cart import Address, Cart, ShippingMethod


class WizardStep(str, Enum):
    UPLOAD = "upload"
    REVIEW = "review"
    ALLOCATE = "allocate"


class ShippingMode(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReviewRow(ApiModel):
    """One row of the address table (CSV import or manual entry)."""
    key: Optional[str] = None
    address: Address = Field(default_factory=Address)
    quantity: int = Field(1, ge=0, le=9999)


# -------------------- Commands --------------------
class SetShippingAddress(ApiModel):
    type: Literal["set_shipping_address"] = "set_shipping_address"
    address: Address


class SetBillingAddress(ApiModel):
    type: Literal["set_billing_address"] = "set_billing_address"
    address: Address


class SetBillingSameAsShipping(ApiModel):
    type: Literal["set_billing_same_as_shipping"] = "set_billing_same_as_shipping"
    same: bool = True


class SelectSingleMethod(ApiModel):
    type: Literal["select_single_method"] = "select_single_method"
    shipping_method_id: str


class ToggleSplitMode(ApiModel):
    type: Literal["toggle_split_mode"] = "toggle_split_mode"
    enter: bool


class AddDestination(ApiModel):
    type: Literal["add_destination"] = "add_destination"


class RemoveDestination(ApiModel):
    type: Literal["remove_destination"] = "remove_destination"
    index: int = Field(..., ge=0)


class EditDestination(ApiModel):
    type: Literal["edit_destination"] = "edit_destination"
    index: int = Field(..., ge=0)
    address: Optional[Address] = Field(None, description="New address; omit to just reopen the form")


class AllocateItem(ApiModel):
    type: Literal["allocate_item"] = "allocate_item"
    index: int = Field(..., ge=0)
    line_item_id: str
    quantity: int = Field(..., description="Units of the line item for this destination; 0 deselects")


class SelectMethod(ApiModel):
    type: Literal["select_method"] = "select_method"
    index: int = Field(..., ge=0)
    shipping_method_id: str


class SetGiftMessage(ApiModel):
    type: Literal["set_gift_message"] = "set_gift_message"
    index: int = Field(..., ge=0)
    message: str = Field("", max_length=500)


class ContinueToDelivery(ApiModel):
    type: Literal["continue_to_delivery"] = "continue_to_delivery"
    index: int = Field(..., ge=0)


class WizardNext(ApiModel):
    type: Literal["wizard_next"] = "wizard_next"


class WizardPrevious(ApiModel):
    type: Literal["wizard_previous"] = "wizard_previous"


class AddReviewRow(ApiModel):
    type: Literal["add_review_row"] = "add_review_row"
    row: ReviewRow


class UpdateReviewRow(ApiModel):
    type: Literal["update_review_row"] = "update_review_row"
    index: int = Field(..., ge=0)
    row: ReviewRow


class RemoveReviewRow(ApiModel):
    type: Literal["remove_review_row"] = "remove_review_row"
    index: int = Field(..., ge=0)


class SubmitReview(ApiModel):
    type: Literal["submit_review"] = "submit_review"


Command = Annotated[
    Union[
        SetShippingAddress,
        SetBillingAddress,
        SetBillingSameAsShipping,
        SelectSingleMethod,
        ToggleSplitMode,
        AddDestination,
        RemoveDestination,
        EditDestination,
        AllocateItem,
        SelectMethod,
        SetGiftMessage,
        ContinueToDelivery,
        WizardNext,
        WizardPrevious,
        AddReviewRow,
        UpdateReviewRow,
        RemoveReviewRow,
        SubmitReview,
    ],
    Field(discriminator="type"),
]

command_adapter: TypeAdapter = TypeAdapter(Command)


# -------------------- API payloads --------------------
class FlowCreate(ApiModel):
    cart_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    line_item_id: Optional[str] = Field(None, description="Line item split by the address table flow")
    base_url: Optional[str] = Field(None, description="Override for the commerce backend base URL")
    locale: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"cartId": "3c5b4a2e-9f1d-4a43-9b7c-0e6a1f1b2c3d"}},
    )


class IssueOut(ApiModel):
    code: str
    message: str
    destination_key: Optional[str] = None
    line_item_id: Optional[str] = None


class AllocationOut(ApiModel):
    line_item_id: str
    quantity: int


class DestinationOut(ApiModel):
    key: str
    shipping_key: str
    address: Address
    allocations: List[AllocationOut]
    shipping_method_id: str
    gift_message: str
    delivery_selected: bool
    is_preview: bool
    complete: bool


class SubmissionReportOut(ApiModel):
    mode: ShippingMode
    completed_steps: List[str]
    failed_step: Optional[str] = None
    error: Optional[str] = None
    cart_version: int


class FlowOut(ApiModel):
    cart_id: str
    cart_version: int
    cart_shipping_mode: ShippingMode
    split_mode: bool
    can_use_split_shipping: bool
    step: Optional[WizardStep] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    billing_same_as_shipping: bool
    selected_shipping_method_id: str
    destinations: List[DestinationOut]
    review_rows: List[ReviewRow]
    remaining_quantities: Dict[str, int]
    has_unallocated_units: bool
    can_submit: bool
    submit_issues: List[IssueOut]
    countries: List[str]
    shipping_methods: List[ShippingMethod]
    user_addresses: List[Address]
    loading: bool
    error: Optional[str] = None
    last_submission: Optional[SubmissionReportOut] = None


class CommandOut(ApiModel):
    accepted: bool
    issues: List[IssueOut]
    flow: FlowOut


class CartOut(ApiModel):
    """Raw cart snapshot as last returned by the backend."""
    cart: Cart
