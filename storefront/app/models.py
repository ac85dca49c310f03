"""
Domain models shared by the storefront client.

Orders come back from the store as JSON and are validated into pydantic
models here; catalog types describe what a customer can configure before an
order exists.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


OrderStatus = Literal["pending", "processing", "approved", "rejected"]

IN_PROGRESS_STATUSES = frozenset({"pending", "processing"})
TERMINAL_STATUSES = frozenset({"approved", "rejected"})

# pending -> processing -> approved|rejected, or pending -> approved|rejected.
STATUS_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"processing", "approved", "rejected"}),
    "processing": frozenset({"approved", "rejected"}),
    "approved": frozenset(),
    "rejected": frozenset(),
}

# Split line items carry ids of the form "<product id>:::CART:::<suffix>".
CART_SEPARATOR = ":::CART:::"

MULTIPLE_ACCOUNTS_KEY = "Multiple Accounts"
PAYMENT_METHOD_KEY = "Payment Method"


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, new: str) -> bool:
    """True when `new` is a legal next status for an order in `current`."""
    return new in STATUS_TRANSITIONS.get(current, frozenset())


# --- Catalog ---

class Variation(BaseModel):
    """A purchasable package of a product, e.g. one credit bundle."""
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    price: float
    reseller_price: Optional[float] = None
    member_price: Optional[float] = None


class AddOn(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    price: float = 0
    quantity: int = 1


class CustomField(BaseModel):
    """An identity field the customer fills in per account (player ID, server...)."""
    key: str
    label: str
    required: bool = True


class Product(BaseModel):
    id: str
    name: str
    image: Optional[str] = None
    is_on_discount: bool = False
    discount_percentage: Optional[float] = None
    custom_fields: List[CustomField] = Field(default_factory=list)
    variations: List[Variation] = Field(default_factory=list)
    add_ons: List[AddOn] = Field(default_factory=list)

    def variation(self, variation_id: str) -> Optional[Variation]:
        for variation in self.variations:
            if variation.id == variation_id:
                return variation
        return None


class Viewer(BaseModel):
    """Who is looking at the menu; decides which price applies."""
    member_id: Optional[str] = None
    user_type: Literal["anonymous", "end_user", "reseller"] = "anonymous"

    @property
    def is_reseller(self) -> bool:
        return self.member_id is not None and self.user_type == "reseller"

    @property
    def is_end_user(self) -> bool:
        return self.member_id is not None and self.user_type == "end_user"


class PaymentMethod(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    account_number: str = ""
    account_name: str = ""
    qr_code_url: str = ""
    icon_url: Optional[str] = None
    active: bool = True
    sort_order: int = 0


# --- Orders ---

class OrderItem(BaseModel):
    """One line of an order, in the camelCase shape stored orders already use."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str
    image: Optional[str] = None
    selected_variation: Optional[Variation] = Field(default=None, alias="selectedVariation")
    selected_add_ons: List[AddOn] = Field(default_factory=list, alias="selectedAddOns")
    total_price: float = Field(alias="totalPrice")
    quantity: int = 1

    @property
    def product_id(self) -> str:
        return self.id.split(CART_SEPARATOR, 1)[0]

    @property
    def line_total(self) -> float:
        return self.total_price * self.quantity

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Order(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    invoice_number: Optional[str] = None
    status: OrderStatus
    order_items: List[OrderItem] = Field(default_factory=list)
    customer_info: Dict[str, Any] = Field(default_factory=dict)
    payment_method_id: Optional[str] = None
    receipt_url: Optional[str] = None
    total_price: float = 0
    rejection_reason: Optional[str] = None
    rejection_message: Optional[str] = None
    approval_message: Optional[str] = None
    member_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def account_info(self) -> "CustomerInfo":
        return parse_customer_info(self.customer_info)


class CreateOrderData(BaseModel):
    """Everything the placement flow sends to the store for a new order."""
    order_items: List[OrderItem] = Field(min_length=1)
    customer_info: Dict[str, Any] = Field(default_factory=dict)
    payment_method_id: Optional[str] = None
    receipt_url: str = Field(min_length=1)
    total_price: float
    member_id: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "order_items": [item.to_wire() for item in self.order_items],
            "customer_info": self.customer_info,
            "payment_method_id": self.payment_method_id,
            "receipt_url": self.receipt_url,
            "total_price": self.total_price,
            "member_id": self.member_id,
        }


# --- Customer info ---
# Stored as one loosely shaped JSON object; modelled here as two variants and
# converted only at the wire boundary.

@dataclass
class AccountGroup:
    game: str
    package: str
    fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class SingleAccountInfo:
    fields: Dict[str, str] = field(default_factory=dict)
    payment_method: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.fields)
        if self.payment_method:
            data[PAYMENT_METHOD_KEY] = self.payment_method
        return data


@dataclass
class MultiAccountInfo:
    accounts: List[AccountGroup] = field(default_factory=list)
    payment_method: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            MULTIPLE_ACCOUNTS_KEY: [
                {"game": a.game, "package": a.package, "fields": dict(a.fields)}
                for a in self.accounts
            ]
        }
        if self.payment_method:
            data[PAYMENT_METHOD_KEY] = self.payment_method
        return data


CustomerInfo = Union[SingleAccountInfo, MultiAccountInfo]


def parse_customer_info(data: Optional[Dict[str, Any]]) -> CustomerInfo:
    data = data or {}
    payment_method = data.get(PAYMENT_METHOD_KEY)
    groups = data.get(MULTIPLE_ACCOUNTS_KEY)
    if isinstance(groups, list):
        accounts = [
            AccountGroup(
                game=str(g.get("game", "")),
                package=str(g.get("package", "")),
                fields={str(k): str(v) for k, v in (g.get("fields") or {}).items()},
            )
            for g in groups
            if isinstance(g, dict)
        ]
        return MultiAccountInfo(accounts=accounts, payment_method=payment_method)

    fields = {
        str(k): str(v)
        for k, v in data.items()
        if k not in (PAYMENT_METHOD_KEY, MULTIPLE_ACCOUNTS_KEY)
    }
    return SingleAccountInfo(fields=fields, payment_method=payment_method)
