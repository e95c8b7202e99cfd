"""Commerce backend payloads (carts, addresses, shipping methods).

The backend speaks camelCase JSON; models accept both the wire names and the
snake_case attribute names so they can be built from either side.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional


class CommerceModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Address(CommerceModel):
    # Unknown backend fields (phone, region, custom...) are carried through untouched
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = None
    key: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    street_name: Optional[str] = None
    street_number: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    company: Optional[str] = None
    additional_address_info: Optional[str] = None

    def same_location(self, other: Optional["Address"]) -> bool:
        """Two addresses are the same delivery point when street, postcode, city and country match."""
        if other is None:
            return False
        return (
            self.street_name == other.street_name
            and self.street_number == other.street_number
            and self.postal_code == other.postal_code
            and self.city == other.city
            and self.country == other.country
        )


class ShippingTarget(CommerceModel):
    address_key: str
    quantity: int = Field(..., ge=0)
    shipping_method_key: Optional[str] = None


class ShippingDetails(CommerceModel):
    targets: List[ShippingTarget] = Field(default_factory=list)


class Variant(CommerceModel):
    sku: Optional[str] = None


class LineItem(CommerceModel):
    id: str
    product_id: Optional[str] = None
    name: Dict[str, str] = Field(default_factory=dict)
    variant: Variant = Field(default_factory=Variant)
    quantity: int = Field(..., ge=1)
    shipping_details: Optional[ShippingDetails] = None

    @property
    def sku(self) -> Optional[str]:
        return self.variant.sku

    @property
    def targets(self) -> List[ShippingTarget]:
        return self.shipping_details.targets if self.shipping_details else []

    def display_name(self, locale: str) -> str:
        if locale in self.name:
            return self.name[locale]
        # fall back to the language part ("en" for "en-US"), then anything
        lang = locale.split("-")[0]
        for k, v in self.name.items():
            if k.split("-")[0] == lang:
                return v
        return next(iter(self.name.values()), self.sku or self.id)


class ZoneRef(CommerceModel):
    id: str


class Money(CommerceModel):
    cent_amount: int
    currency_code: str


class ShippingRate(CommerceModel):
    price: Money


class ZoneRate(CommerceModel):
    zone: ZoneRef
    shipping_rates: List[ShippingRate] = Field(default_factory=list)


class ShippingMethod(CommerceModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    zone_rates: List[ZoneRate] = Field(default_factory=list)


class ShippingInfo(CommerceModel):
    shipping_method: Optional[ShippingMethod] = None


class ShippingEntry(CommerceModel):
    shipping_key: Optional[str] = None
    shipping_address: Optional[Address] = None
    shipping_info: Optional[ShippingInfo] = None

    @property
    def method_id(self) -> Optional[str]:
        if self.shipping_info and self.shipping_info.shipping_method:
            return self.shipping_info.shipping_method.id
        return None


class Cart(CommerceModel):
    id: str
    version: int
    line_items: List[LineItem] = Field(default_factory=list)
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    shipping_mode: Optional[str] = None
    shipping_info: Optional[ShippingInfo] = None
    item_shipping_addresses: List[Address] = Field(default_factory=list)
    shipping: List[ShippingEntry] = Field(default_factory=list)

    def line_item(self, line_item_id: str) -> Optional[LineItem]:
        return next((li for li in self.line_items if li.id == line_item_id), None)

    @property
    def total_quantity(self) -> int:
        return sum(li.quantity for li in self.line_items)


class ProjectSettings(CommerceModel):
    countries: List[str] = Field(default_factory=list)
    currencies: List[str] = Field(default_factory=list)


class MethodAssignment(CommerceModel):
    """One entry of the add-shipping-methods payload."""
    shipping_key: str
    shipping_method_id: str
    shipping_address: Address
