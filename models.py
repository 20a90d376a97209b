from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey
from sqlalchemy.sql import func
from database import Base


class Coupon(Base):
    """
    Database model for coupons.

    type: 'cart-wise' | 'product-wise' | 'bxgy' | 'master'
    details: JSON field storing type-specific discount details.
        - cart-wise:    { "threshold": <num>, "discount": <num>, "discount_type": "percentage" | "fixed" }
        - product-wise: { "product_id": <int>, "discount": <num>, "discount_type": "percentage" | "fixed" }
        - bxgy:         {
                            "buy_products": [{"product_id": <int>, "quantity": <int>}, ...],
                            "get_products": [{"product_id": <int>, "quantity": <int>}, ...],
                            "repetition_limit": <int>
                        }
        - master:       {}  (100% off the whole cart, once per cart)
    """
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    type = Column(String, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    expiration_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class MasterCouponUsage(Base):
    """
    One row per (master coupon, cart) pair that has already been consumed.

    The composite primary key is what makes a second claim on the same pair
    fail, including when two requests race for it.
    """
    __tablename__ = "master_coupon_usage"

    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True)
    cart_id = Column(String, primary_key=True)
    used_at = Column(DateTime(timezone=True), server_default=func.now())
