from typing import Iterable, Optional

from .models import AddOn, Product, Variation, Viewer


def discounted_price(product: Product, base_price: float) -> float:
    """Applies the product's percentage discount (10 means 10% off) when active."""
    if product.is_on_discount and product.discount_percentage:
        return base_price - base_price * product.discount_percentage / 100
    return base_price


def resolve_unit_price(product: Product, variation: Variation, viewer: Optional[Viewer] = None) -> float:
    """
    Price of one unit of `variation` for `viewer`, first match wins:
    1. reseller price, for resellers;
    2. member price, for signed-in end users;
    3. the product's percentage discount on the base price;
    4. the base price.
    """
    if viewer is not None:
        if viewer.is_reseller and variation.reseller_price is not None:
            return variation.reseller_price
        if viewer.is_end_user and variation.member_price is not None:
            return variation.member_price
    return discounted_price(product, variation.price)


def add_ons_price(add_ons: Iterable[AddOn]) -> float:
    return sum(a.price * a.quantity for a in add_ons)


def line_unit_price(
    product: Product,
    variation: Variation,
    add_ons: Iterable[AddOn] = (),
    viewer: Optional[Viewer] = None,
) -> float:
    return round(resolve_unit_price(product, variation, viewer) + add_ons_price(add_ons), 2)
