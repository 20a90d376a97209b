"""
main.py
=======
FastAPI application entry point.

Endpoints:
  POST   /coupons                   - Create a coupon
  GET    /coupons                   - List all coupons
  GET    /coupons/{id}              - Get coupon by ID
  PUT    /coupons/{id}              - Update coupon
  DELETE /coupons/{id}              - Delete coupon
  POST   /applicable-coupons        - Get all applicable coupons for a given cart, best first
  POST   /apply-coupon/{id}         - Apply a specific coupon to the cart
  DELETE /master-usage/{cart_id}    - Admin: forget master coupon usage for a cart
"""

import logging

from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from typing import List

import schemas
import coupon_engine
from config import settings
from database import get_db, init_db
from exceptions import CouponError
from log_config import setup_logging
from store import CouponStore

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Create DB tables on startup
init_db()

app = FastAPI(
    title="Coupons Management API",
    description=(
        "RESTful API to manage cart-wise, product-wise, BxGy and master discount coupons "
        "for an e-commerce platform."
    ),
    version="2.0.0",
)


def get_store(db: Session = Depends(get_db)) -> CouponStore:
    return CouponStore(db)


@app.exception_handler(CouponError)
async def coupon_error_handler(request: Request, exc: CouponError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def _get_or_404(store: CouponStore, coupon_id: int):
    coupon = store.get_coupon(coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail=f"Coupon with id={coupon_id} not found")
    return coupon


# ═══════════════════════════════════════════════════
#  COUPON CRUD
# ═══════════════════════════════════════════════════

@app.post(
    "/coupons",
    response_model=schemas.CouponResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Coupons"],
    summary="Create a new coupon",
)
def create_coupon(coupon: schemas.CouponCreate, store: CouponStore = Depends(get_store)):
    """
    Create a new coupon. Supports four types:
    - **cart-wise**: Percentage or fixed amount off the cart when its total exceeds a threshold.
    - **product-wise**: Percentage or fixed amount off a specific product's line.
    - **bxgy**: Buy X get Y free with a repetition limit.
    - **master**: 100% off the whole cart, usable once per cart.
    """
    return store.create_coupon(coupon)


@app.get(
    "/coupons",
    response_model=List[schemas.CouponResponse],
    tags=["Coupons"],
    summary="Get all coupons",
)
def get_all_coupons(store: CouponStore = Depends(get_store)):
    """Retrieve all coupons, expired ones included."""
    return store.list_coupons()


@app.get(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Get a coupon by ID",
)
def get_coupon(coupon_id: int, store: CouponStore = Depends(get_store)):
    """Retrieve a specific coupon by its ID."""
    return _get_or_404(store, coupon_id)


@app.put(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Update a coupon",
)
def update_coupon(coupon_id: int, update_data: schemas.CouponUpdate, store: CouponStore = Depends(get_store)):
    """
    Update a specific coupon. All fields are optional; only provided fields are updated.
    Sending `"expiration_date": null` removes the expiration.
    Changing the type or the details re-validates the details against the resulting type.
    """
    coupon = _get_or_404(store, coupon_id)
    try:
        return store.update_coupon(coupon, update_data)
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=schemas.format_validation_errors(e),
        )


@app.delete(
    "/coupons/{coupon_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Coupons"],
    summary="Delete a coupon",
)
def delete_coupon(coupon_id: int, store: CouponStore = Depends(get_store)):
    """Delete a specific coupon by its ID."""
    coupon = _get_or_404(store, coupon_id)
    store.delete_coupon(coupon)
    return None


# ═══════════════════════════════════════════════════
#  APPLICABLE COUPONS
# ═══════════════════════════════════════════════════

@app.post(
    "/applicable-coupons",
    response_model=schemas.ApplicableCouponsResponse,
    tags=["Apply Coupons"],
    summary="Fetch all applicable coupons for a given cart",
)
def get_applicable_coupons(request: schemas.CartRequest, store: CouponStore = Depends(get_store)):
    """
    Given a cart (list of items with product_id, quantity, price and an optional cart_id),
    returns every non-expired coupon that gives a positive discount, best discount first.
    """
    applicable = coupon_engine.list_applicable(request.cart, store)
    return schemas.ApplicableCouponsResponse(applicable_coupons=applicable)


# ═══════════════════════════════════════════════════
#  APPLY COUPON
# ═══════════════════════════════════════════════════

@app.post(
    "/apply-coupon/{coupon_id}",
    response_model=schemas.ApplyCouponResponse,
    tags=["Apply Coupons"],
    summary="Apply a specific coupon to the cart",
)
def apply_coupon(coupon_id: int, request: schemas.CartRequest, store: CouponStore = Depends(get_store)):
    """
    Apply a specific coupon to the cart.

    Returns an updated cart showing:
    - Each item's quantity, price, and discount applied.
    - Total price (before discount), total discount, and final price.

    A cart that does not meet the coupon's conditions is returned with zero discount.
    A master coupon can be applied only once per cart_id.
    """
    updated = coupon_engine.apply_coupon(coupon_id, request.cart, store)
    return schemas.ApplyCouponResponse(updated_cart=updated)


# ═══════════════════════════════════════════════════
#  ADMIN
# ═══════════════════════════════════════════════════

@app.delete(
    "/master-usage/{cart_id}",
    response_model=schemas.MasterUsageResetResponse,
    tags=["Admin"],
    summary="Reset master coupon usage for a cart",
)
def reset_master_usage(cart_id: str, store: CouponStore = Depends(get_store)):
    """Make every master coupon usable again for the given cart_id."""
    cleared = store.reset_master_usage(cart_id)
    return schemas.MasterUsageResetResponse(cart_id=cart_id, cleared=cleared)


# ═══════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════

@app.get("/", tags=["Health"], summary="Health check")
def root():
    return {"status": "ok", "message": "Coupons Management API is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=False)
