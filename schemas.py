from pydantic import AliasChoices, BaseModel, Field, PlainSerializer, ValidationError, field_validator, model_validator
from typing import Annotated, Optional, List, Any, Dict, Type
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


# Monetary values are Decimal in Python and plain numbers on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# ─────────────── Enums ───────────────

class CouponType(str, Enum):
    cart_wise = "cart-wise"
    product_wise = "product-wise"
    bxgy = "bxgy"
    master = "master"


class DiscountType(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


# ─────────────── Detail Sub-schemas ───────────────

class CartWiseDetails(BaseModel):
    threshold: Money  # Cart total must be strictly above this
    discount: Money   # Percent (0-100) or absolute amount, see discount_type
    discount_type: DiscountType = DiscountType.percentage

    @field_validator("threshold")
    @classmethod
    def threshold_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Threshold must be a positive number")
        return v

    @field_validator("discount")
    @classmethod
    def discount_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Discount cannot be negative")
        return v

    @model_validator(mode="after")
    def percentage_max_100(self) -> "CartWiseDetails":
        if self.discount_type == DiscountType.percentage and self.discount > 100:
            raise ValueError("Discount percentage cannot exceed 100")
        return self


class ProductWiseDetails(BaseModel):
    product_id: int   # Target product
    discount: Money
    discount_type: DiscountType = DiscountType.percentage

    @field_validator("discount")
    @classmethod
    def discount_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Discount cannot be negative")
        return v

    @model_validator(mode="after")
    def percentage_max_100(self) -> "ProductWiseDetails":
        if self.discount_type == DiscountType.percentage and self.discount > 100:
            raise ValueError("Discount percentage cannot exceed 100")
        return self


class BxGyProduct(BaseModel):
    product_id: int
    quantity: int

    @field_validator("quantity")
    @classmethod
    def qty_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v


class BxGyDetails(BaseModel):
    buy_products: List[BxGyProduct]   # Pooled: any mix of these counts towards the requirement
    get_products: List[BxGyProduct]   # Products whose units in the cart may be freed
    # Older payloads spell it "repition_limit"
    repetition_limit: int = Field(
        default=1,
        validation_alias=AliasChoices("repetition_limit", "repition_limit"),
    )

    @field_validator("repetition_limit")
    @classmethod
    def limit_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Repetition limit must be positive")
        return v

    @field_validator("buy_products", "get_products")
    @classmethod
    def not_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("Product list cannot be empty")
        return v


class MasterDetails(BaseModel):
    """Marker only: a master coupon takes no parameters."""
    model_config = {"extra": "allow"}


DETAIL_SCHEMAS: Dict[CouponType, Type[BaseModel]] = {
    CouponType.cart_wise: CartWiseDetails,
    CouponType.product_wise: ProductWiseDetails,
    CouponType.bxgy: BxGyDetails,
    CouponType.master: MasterDetails,
}


def parse_details(coupon_type: CouponType, details: Any) -> BaseModel:
    """
    Validate raw ``details`` against the schema of ``coupon_type``.
    Raises pydantic.ValidationError on bad input.
    """
    schema = DETAIL_SCHEMAS[CouponType(coupon_type)]
    return schema.model_validate(details if details is not None else {})


def format_validation_errors(exc: ValidationError) -> str:
    """Flatten a ValidationError into "loc: message; loc: message"."""
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'details'}: {err['msg']}"
        for err in exc.errors()
    )


def _expiration_to_utc(v: Optional[datetime]) -> Optional[datetime]:
    # Stored as naive UTC: the DateTime column keeps wall-clock time only
    if v is None or v.tzinfo is None:
        return v
    return v.astimezone(timezone.utc).replace(tzinfo=None)


# ─────────────── Coupon Request / Response ───────────────

class CouponCreate(BaseModel):
    type: CouponType
    details: Any = None  # Validated per type in validator below
    expiration_date: Optional[datetime] = None

    normalize_expiration = field_validator("expiration_date")(_expiration_to_utc)

    @model_validator(mode="after")
    def validate_details_by_type(self) -> "CouponCreate":
        self.details = parse_details(self.type, self.details).model_dump(mode="json")
        return self


class CouponUpdate(BaseModel):
    type: Optional[CouponType] = None
    details: Optional[Any] = None
    expiration_date: Optional[datetime] = None

    normalize_expiration = field_validator("expiration_date")(_expiration_to_utc)


class CouponResponse(BaseModel):
    id: int
    type: CouponType
    details: Any
    expiration_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ─────────────── Cart schemas ───────────────

class CartItem(BaseModel):
    product_id: int
    quantity: int
    price: Money  # Price per unit

    @field_validator("quantity")
    @classmethod
    def qty_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Price cannot be negative")
        return v


class Cart(BaseModel):
    items: List[CartItem] = Field(default_factory=list)
    cart_id: Optional[str] = None  # Scopes master coupon usage; "default" when omitted


class CartRequest(BaseModel):
    cart: Cart


# ─────────────── Applicable Coupons Response ───────────────

class ApplicableCoupon(BaseModel):
    coupon_id: int
    type: CouponType
    discount: Money  # Absolute discount value, rounded to cents


class ApplicableCouponsResponse(BaseModel):
    applicable_coupons: List[ApplicableCoupon]


# ─────────────── Apply Coupon Response ───────────────

class UpdatedCartItem(BaseModel):
    product_id: int
    quantity: int
    price: Money
    total_discount: Money


class UpdatedCart(BaseModel):
    items: List[UpdatedCartItem]
    total_price: Money
    total_discount: Money
    final_price: Money


class ApplyCouponResponse(BaseModel):
    updated_cart: UpdatedCart


# ─────────────── Admin ───────────────

class MasterUsageResetResponse(BaseModel):
    cart_id: str
    cleared: int
