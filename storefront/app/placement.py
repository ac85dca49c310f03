"""
Order placement: turns the customer's selections into one store insert.

A purchase of N units for one account becomes N line items of quantity 1;
stored orders already look like that and `display.aggregate_order_items`
folds them back together for display.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .models import (
    CART_SEPARATOR,
    AccountGroup,
    AddOn,
    CreateOrderData,
    CustomField,
    CustomerInfo,
    MultiAccountInfo,
    Order,
    OrderItem,
    PaymentMethod,
    Product,
    SingleAccountInfo,
    Variation,
    Viewer,
)
from .pricing import line_unit_price
from .store import OrderStoreError

logger = logging.getLogger(__name__)

# Used when a product declares no identity fields of its own.
DEFAULT_FIELDS = [CustomField(key="ign", label="IGN", required=True)]

PLACE_ORDER_FAILED = "Failed to place order. Please try again."


class PlacementError(Exception):
    """The order cannot be submitted as it stands."""


class ReceiptState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


@dataclass
class AccountSelection:
    """One game account being topped up: its identity fields and package."""

    fields: Dict[str, str] = field(default_factory=dict)
    variation: Optional[Variation] = None
    quantity: int = 1
    add_ons: List[AddOn] = field(default_factory=list)


class OrderPlacementFlow:
    def __init__(
        self,
        product: Product,
        viewer: Optional[Viewer] = None,
        payment_methods: Iterable[PaymentMethod] = (),
        uploader: Optional[Callable[[bytes, str, str], str]] = None,
        multi_account: bool = False,
    ) -> None:
        self.product = product
        self.viewer = viewer
        self.payment_methods = {m.id: m for m in payment_methods}
        self.uploader = uploader
        self.multi_account = multi_account

        self.accounts: List[AccountSelection] = [AccountSelection()]
        self.payment_method_id: Optional[str] = None

        self.receipt_state = ReceiptState.IDLE
        self.receipt_url: Optional[str] = None
        self.receipt_filename: Optional[str] = None
        self.receipt_error: Optional[str] = None
        self._upload = 0
        self._lock = threading.Lock()

    @property
    def fields(self) -> List[CustomField]:
        return self.product.custom_fields or DEFAULT_FIELDS

    # -------------------- selections --------------------

    def add_account(self) -> int:
        if not self.multi_account:
            raise PlacementError("Single-account orders have exactly one account")
        self.accounts.append(AccountSelection())
        return len(self.accounts) - 1

    def remove_account(self, index: int) -> None:
        if len(self.accounts) == 1:
            raise PlacementError("An order needs at least one account")
        del self.accounts[index]

    def set_field(self, index: int, key: str, value: str) -> None:
        self.accounts[index].fields[key] = value

    def select_variation(self, index: int, variation_id: str, quantity: int = 1) -> None:
        variation = self.product.variation(variation_id)
        if variation is None:
            raise PlacementError(f"Unknown package: {variation_id}")
        if quantity < 1:
            raise PlacementError("Quantity must be at least 1")
        account = self.accounts[index]
        account.variation = variation
        account.quantity = quantity

    def set_add_ons(self, index: int, add_ons: Iterable[AddOn]) -> None:
        self.accounts[index].add_ons = list(add_ons)

    def select_payment_method(self, payment_method_id: str) -> None:
        if self.payment_methods and payment_method_id not in self.payment_methods:
            raise PlacementError(f"Unknown payment method: {payment_method_id}")
        self.payment_method_id = payment_method_id

    # -------------------- receipt --------------------

    def upload_receipt(self, content: bytes, filename: str, content_type: str = "image/jpeg") -> bool:
        """
        Uploads the proof of payment. May be run off the caller's thread; only
        the receipt fields change, and a result for a receipt that was removed
        or replaced in the meantime is dropped.
        """
        if self.uploader is None:
            raise PlacementError("No receipt uploader configured")
        with self._lock:
            self._upload += 1
            upload = self._upload
            self.receipt_state = ReceiptState.UPLOADING
            self.receipt_filename = filename
            self.receipt_url = None
            self.receipt_error = None

        try:
            url = self.uploader(content, filename, content_type)
        except OrderStoreError as e:
            logger.error("Error uploading receipt %s: %s", filename, e)
            with self._lock:
                if upload == self._upload:
                    self.receipt_state = ReceiptState.FAILED
                    self.receipt_filename = None
                    self.receipt_error = str(e) or "Failed to upload"
            return False

        with self._lock:
            if upload != self._upload:
                return False
            self.receipt_state = ReceiptState.UPLOADED
            self.receipt_url = url
        return True

    def remove_receipt(self) -> None:
        with self._lock:
            self._upload += 1
            self.receipt_state = ReceiptState.IDLE
            self.receipt_url = None
            self.receipt_filename = None
            self.receipt_error = None

    # -------------------- pricing --------------------

    def unit_price(self, account: AccountSelection) -> float:
        if account.variation is None:
            return 0
        return line_unit_price(self.product, account.variation, account.add_ons, self.viewer)

    def line_items(self) -> List[OrderItem]:
        items = []
        for account in self.accounts:
            if account.variation is None:
                continue
            unit = self.unit_price(account)
            for _ in range(account.quantity):
                items.append(OrderItem(
                    id=f"{self.product.id}{CART_SEPARATOR}{uuid.uuid4().hex}",
                    name=self.product.name,
                    image=self.product.image,
                    selected_variation=account.variation,
                    selected_add_ons=list(account.add_ons),
                    total_price=unit,
                    quantity=1,
                ))
        return items

    @property
    def total_price(self) -> float:
        return round(sum(self.unit_price(a) * a.quantity for a in self.accounts if a.variation), 2)

    # -------------------- validation --------------------

    def validation_errors(self) -> List[str]:
        errors = []
        for number, account in enumerate(self.accounts, start=1):
            if account.variation is None:
                errors.append(f"Account {number}: select a package")
                continue
            for f in self.fields:
                if f.required and not account.fields.get(f.key, "").strip():
                    errors.append(f"Account {number}: {f.label} is required")
        if not self.payment_method_id:
            errors.append("Select a payment method")
        if self.receipt_state is not ReceiptState.UPLOADED or not self.receipt_url:
            errors.append("Upload your payment receipt")
        return errors

    def can_submit(self) -> bool:
        return not self.validation_errors()

    # -------------------- submission --------------------

    def _labelled(self, account: AccountSelection) -> Dict[str, str]:
        values = {}
        for f in self.fields:
            value = account.fields.get(f.key, "").strip()
            if value:
                values[f.label] = value
        return values

    def customer_info(self) -> CustomerInfo:
        method = self.payment_methods.get(self.payment_method_id or "")
        payment_method = method.name if method else None
        if self.multi_account:
            return MultiAccountInfo(
                accounts=[
                    AccountGroup(
                        game=self.product.name,
                        package=a.variation.name,
                        fields=self._labelled(a),
                    )
                    for a in self.accounts
                    if a.variation is not None
                ],
                payment_method=payment_method,
            )
        return SingleAccountInfo(fields=self._labelled(self.accounts[0]), payment_method=payment_method)

    def build_order(self) -> CreateOrderData:
        errors = self.validation_errors()
        if errors:
            raise PlacementError("; ".join(errors))
        items = self.line_items()
        return CreateOrderData(
            order_items=items,
            customer_info=self.customer_info().to_wire(),
            payment_method_id=self.payment_method_id,
            receipt_url=self.receipt_url,
            total_price=round(sum(i.line_total for i in items), 2),
            member_id=self.viewer.member_id if self.viewer else None,
        )

    def submit(self, repository) -> Order:
        order = repository.create(self.build_order())
        if order is None:
            raise PlacementError(PLACE_ORDER_FAILED)
        return order
