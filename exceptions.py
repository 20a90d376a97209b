"""
exceptions.py
=============
Errors raised by the discount engine. The API layer maps each one to an
HTTP status; none of them are retried internally.
"""


class CouponError(Exception):
    """Base class for engine errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CouponNotFound(CouponError):
    status_code = 404

    def __init__(self, coupon_id: int):
        super().__init__(f"Coupon with id={coupon_id} not found")
        self.coupon_id = coupon_id


class CouponExpired(CouponError):
    def __init__(self, coupon_id: int):
        super().__init__("Coupon has expired")
        self.coupon_id = coupon_id


class MasterAlreadyUsed(CouponError):
    def __init__(self, coupon_id: int, cart_id: str):
        super().__init__("Master coupon has already been used for this cart")
        self.coupon_id = coupon_id
        self.cart_id = cart_id


class InvalidRuleParameters(CouponError):
    """Stored coupon details do not match the schema of the coupon's type."""

    status_code = 422

    def __init__(self, coupon_id: int, reason: str):
        super().__init__(f"Coupon id={coupon_id} has invalid details: {reason}")
        self.coupon_id = coupon_id
        self.reason = reason
