"""
coupon_engine.py
================
Core business logic for computing and allocating discounts.

Implemented Cases:
------------------
1. cart-wise:
   - Applies when the cart total is strictly above the threshold.
   - Percentage of the total, or a fixed amount capped at the total.
   - On apply, the discount is spread across items in proportion to their
     line totals.

2. product-wise:
   - Percentage of, or fixed amount capped at, the line total of the first
     cart line holding the target product.

3. bxgy (Buy X, Get Y):
   - Buy quantities are pooled: any mix of the listed buy products counts
     towards the per-repetition requirement.
   - Each repetition (capped by repetition_limit) frees the summed get
     quantities, taken from get-product units already in the cart.
   - Free units go to the most expensive eligible lines first.

4. master:
   - 100% off the whole cart, once per (coupon, cart_id). Ranking only
     reads the usage record; applying writes it.

Money:
------
All amounts are Decimal and rounded to cents with ROUND_HALF_UP, the same
way in ranking and in allocation.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

import models
import schemas
from exceptions import CouponExpired, CouponNotFound, InvalidRuleParameters, MasterAlreadyUsed
from schemas import (
    BxGyDetails,
    Cart,
    CartItem,
    CartWiseDetails,
    CouponType,
    DiscountType,
    ProductWiseDetails,
)
from store import CouponStore

logger = logging.getLogger(__name__)

DEFAULT_CART_ID = "default"

CENT = Decimal("0.01")
ZERO = Decimal("0")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _line_total(item: CartItem) -> Decimal:
    return item.price * item.quantity


def _cart_total(items: List[CartItem]) -> Decimal:
    return sum((_line_total(item) for item in items), ZERO)


def _apply_mode(base: Decimal, amount: Decimal, mode: DiscountType) -> Decimal:
    if mode == DiscountType.percentage:
        return base * amount / 100
    return min(amount, base)


def resolve_cart_id(cart: Cart) -> str:
    return cart.cart_id or DEFAULT_CART_ID


# ─────────────────────────── Cart-wise ───────────────────────────

def compute_cart_wise_discount(items: List[CartItem], details: CartWiseDetails) -> Decimal:
    total = _cart_total(items)
    # Strictly above: a total equal to the threshold does not qualify
    if total <= details.threshold:
        return ZERO
    return _apply_mode(total, details.discount, details.discount_type)


# ─────────────────────────── Product-wise ───────────────────────────

def _find_line(items: List[CartItem], product_id: int) -> Optional[int]:
    for index, item in enumerate(items):
        if item.product_id == product_id:
            return index
    return None


def compute_product_wise_discount(items: List[CartItem], details: ProductWiseDetails) -> Decimal:
    index = _find_line(items, details.product_id)
    if index is None:
        return ZERO
    return _apply_mode(_line_total(items[index]), details.discount, details.discount_type)


# ─────────────────────────── BxGy ───────────────────────────

def _bxgy_repetitions(items: List[CartItem], details: BxGyDetails) -> int:
    required = sum(bp.quantity for bp in details.buy_products)
    if required <= 0:
        return 0

    available = 0
    for bp in details.buy_products:
        index = _find_line(items, bp.product_id)
        if index is not None:
            available += items[index].quantity

    return min(available // required, details.repetition_limit)


def _bxgy_free_units(items: List[CartItem], details: BxGyDetails) -> List[Tuple[int, int]]:
    """
    Returns (cart line index, units freed on that line) in allocation order.

    Both the calculator and the allocator go through here, so the discount
    shown while ranking is exactly what apply hands out.
    """
    repetitions = _bxgy_repetitions(items, details)
    if repetitions == 0:
        return []

    budget = repetitions * sum(gp.quantity for gp in details.get_products)
    eligible = {gp.product_id for gp in details.get_products}

    candidates = [index for index, item in enumerate(items) if item.product_id in eligible]
    # sorted() is stable, so equal prices keep cart order
    candidates = sorted(candidates, key=lambda index: items[index].price, reverse=True)

    freed = []
    for index in candidates:
        if budget == 0:
            break
        units = min(budget, items[index].quantity)
        freed.append((index, units))
        budget -= units
    return freed


def compute_bxgy_discount(items: List[CartItem], details: BxGyDetails) -> Decimal:
    return sum(
        (items[index].price * units for index, units in _bxgy_free_units(items, details)),
        ZERO,
    )


# ─────────────────────────── Master ───────────────────────────

def compute_master_discount(cart: Cart, coupon_id: int, store: CouponStore) -> Decimal:
    if store.has_master_been_used(coupon_id, resolve_cart_id(cart)):
        return ZERO
    return _cart_total(cart.items)


# ─────────────────────────── Allocation ───────────────────────────

def _distribute(amount: Decimal, weights: List[Decimal]) -> List[Decimal]:
    """
    Split ``amount`` (already in cents) across ``weights`` proportionally.

    Each share is floored to the cent, then the cents lost to flooring go one
    by one to the largest remainders, so the shares always add up to
    ``amount`` exactly.
    """
    total_weight = sum(weights, ZERO)
    if total_weight <= 0:
        return [ZERO] * len(weights)

    exact = [amount * weight / total_weight for weight in weights]
    shares = [value.quantize(CENT, rounding=ROUND_DOWN) for value in exact]
    leftover = int((amount - sum(shares, ZERO)) / CENT)

    by_remainder = sorted(range(len(weights)), key=lambda i: exact[i] - shares[i], reverse=True)
    for i in by_remainder[:leftover]:
        shares[i] += CENT
    return shares


def allocate_cart_wise(items: List[CartItem], details: CartWiseDetails) -> List[Decimal]:
    discount = _money(compute_cart_wise_discount(items, details))
    if discount <= 0:
        return [ZERO] * len(items)
    return _distribute(discount, [_line_total(item) for item in items])


def allocate_product_wise(items: List[CartItem], details: ProductWiseDetails) -> List[Decimal]:
    per_item = [ZERO] * len(items)
    index = _find_line(items, details.product_id)
    if index is not None:
        per_item[index] = _money(compute_product_wise_discount(items, details))
    return per_item


def allocate_bxgy(items: List[CartItem], details: BxGyDetails) -> List[Decimal]:
    per_item = [ZERO] * len(items)
    for index, units in _bxgy_free_units(items, details):
        per_item[index] = _money(items[index].price * units)
    return per_item


def allocate_master(cart: Cart, coupon_id: int, store: CouponStore) -> List[Decimal]:
    cart_id = resolve_cart_id(cart)
    if store.has_master_been_used(coupon_id, cart_id):
        logger.warning("Master coupon id=%s refused: cart_id=%s already used it", coupon_id, cart_id)
        raise MasterAlreadyUsed(coupon_id, cart_id)

    per_item = [_money(_line_total(item)) for item in cart.items]

    # The insert is the authoritative check; losing a race ends up here
    if not store.mark_master_used(coupon_id, cart_id):
        logger.warning("Master coupon id=%s lost the claim on cart_id=%s", coupon_id, cart_id)
        raise MasterAlreadyUsed(coupon_id, cart_id)
    return per_item


# ─────────────────────────── Dispatch ───────────────────────────

# (cart, parsed details, coupon id, store)
Calculator = Callable[[Cart, BaseModel, int, CouponStore], Decimal]
Allocator = Callable[[Cart, BaseModel, int, CouponStore], List[Decimal]]

CALCULATORS: Dict[CouponType, Calculator] = {
    CouponType.cart_wise: lambda cart, details, coupon_id, store: compute_cart_wise_discount(cart.items, details),
    CouponType.product_wise: lambda cart, details, coupon_id, store: compute_product_wise_discount(cart.items, details),
    CouponType.bxgy: lambda cart, details, coupon_id, store: compute_bxgy_discount(cart.items, details),
    CouponType.master: lambda cart, details, coupon_id, store: compute_master_discount(cart, coupon_id, store),
}

ALLOCATORS: Dict[CouponType, Allocator] = {
    CouponType.cart_wise: lambda cart, details, coupon_id, store: allocate_cart_wise(cart.items, details),
    CouponType.product_wise: lambda cart, details, coupon_id, store: allocate_product_wise(cart.items, details),
    CouponType.bxgy: lambda cart, details, coupon_id, store: allocate_bxgy(cart.items, details),
    CouponType.master: lambda cart, details, coupon_id, store: allocate_master(cart, coupon_id, store),
}


def load_rule(coupon: models.Coupon) -> Tuple[CouponType, BaseModel]:
    """Parse a stored coupon into its type and typed details."""
    try:
        coupon_type = CouponType(coupon.type)
    except ValueError:
        raise InvalidRuleParameters(coupon.id, f"unknown coupon type {coupon.type!r}") from None
    try:
        details = schemas.parse_details(coupon_type, coupon.details)
    except ValidationError as exc:
        raise InvalidRuleParameters(coupon.id, schemas.format_validation_errors(exc)) from exc
    return coupon_type, details


# ─────────────────────────── Ranking ───────────────────────────

def list_applicable(
    cart: Cart,
    store: CouponStore,
    now: Optional[datetime] = None,
) -> List[schemas.ApplicableCoupon]:
    """
    Every non-expired coupon giving a positive discount on ``cart``, best
    first. Coupons with malformed details are logged and left out.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    applicable = []
    for coupon in store.list_coupons():
        if store.is_expired(coupon, now):
            continue
        try:
            coupon_type, details = load_rule(coupon)
        except InvalidRuleParameters as exc:
            logger.warning("Skipping coupon id=%s: %s", coupon.id, exc.reason)
            continue

        discount = _money(CALCULATORS[coupon_type](cart, details, coupon.id, store))
        logger.debug("Coupon id=%s (%s) yields %s", coupon.id, coupon_type.value, discount)
        if discount > 0:
            applicable.append(schemas.ApplicableCoupon(
                coupon_id=coupon.id,
                type=coupon_type,
                discount=discount,
            ))

    applicable.sort(key=lambda c: c.discount, reverse=True)
    return applicable


# ─────────────────────────── Apply ───────────────────────────

def apply_coupon(
    coupon_id: int,
    cart: Cart,
    store: CouponStore,
    now: Optional[datetime] = None,
) -> schemas.UpdatedCart:
    """
    Apply one coupon to ``cart`` and return the priced cart with a discount
    on every line. The discount is recomputed from ``cart``; a cart that does
    not meet the coupon's conditions comes back with zero discount.

    Raises CouponNotFound, CouponExpired, InvalidRuleParameters and, for
    master coupons, MasterAlreadyUsed.
    """
    coupon = store.get_coupon(coupon_id)
    if coupon is None:
        raise CouponNotFound(coupon_id)
    if store.is_expired(coupon, now):
        raise CouponExpired(coupon_id)

    coupon_type, details = load_rule(coupon)
    per_item = ALLOCATORS[coupon_type](cart, details, coupon.id, store)

    original_total = _cart_total(cart.items)
    total_discount = _money(sum(per_item, ZERO))
    final_price = max(ZERO, _money(original_total - total_discount))

    logger.info(
        "Applied %s coupon id=%s: total=%s discount=%s final=%s",
        coupon_type.value, coupon.id, _money(original_total), total_discount, final_price,
    )

    return schemas.UpdatedCart(
        items=[
            schemas.UpdatedCartItem(
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                total_discount=discount,
            )
            for item, discount in zip(cart.items, per_item)
        ],
        total_price=_money(original_total),
        total_discount=total_discount,
        final_price=final_price,
    )
