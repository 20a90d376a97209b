"""
store.py
========
Coupon store backed by a SQLAlchemy session.

The engine only talks to coupons through this class: lookup, listing,
expiration checks and the per-cart usage record of master coupons. Tests
hand it a session on an in-memory database; the API hands it the request
session from ``database.get_db``.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
import schemas

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; those are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CouponStore:

    def __init__(self, db: Session):
        self.db = db

    # ─────────────── Lookup ───────────────

    def get_coupon(self, coupon_id: int) -> Optional[models.Coupon]:
        return self.db.get(models.Coupon, coupon_id)

    def list_coupons(self) -> List[models.Coupon]:
        """All coupons, materialised in one query so a ranking pass sees a single snapshot."""
        return self.db.query(models.Coupon).order_by(models.Coupon.id).all()

    @staticmethod
    def is_expired(coupon: models.Coupon, now: Optional[datetime] = None) -> bool:
        if coupon.expiration_date is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        return _as_utc(coupon.expiration_date) < _as_utc(now)

    # ─────────────── CRUD ───────────────

    def create_coupon(self, payload: schemas.CouponCreate) -> models.Coupon:
        coupon = models.Coupon(
            type=payload.type.value,
            details=payload.details,
            expiration_date=payload.expiration_date,
        )
        self.db.add(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        logger.info("Created %s coupon id=%s", coupon.type, coupon.id)
        return coupon

    def update_coupon(self, coupon: models.Coupon, update_data: schemas.CouponUpdate) -> models.Coupon:
        """
        Apply the provided fields only. When the type or the details change,
        the resulting pair is validated against the type's schema first.
        """
        new_type = update_data.type.value if update_data.type is not None else coupon.type
        if update_data.type is not None or update_data.details is not None:
            details = update_data.details if update_data.details is not None else coupon.details
            coupon.details = schemas.parse_details(new_type, details).model_dump(mode="json")
            coupon.type = new_type
        # An explicit null clears the expiration
        if "expiration_date" in update_data.model_fields_set:
            coupon.expiration_date = update_data.expiration_date

        self.db.commit()
        self.db.refresh(coupon)
        logger.info("Updated coupon id=%s", coupon.id)
        return coupon

    def delete_coupon(self, coupon: models.Coupon) -> None:
        self.db.query(models.MasterCouponUsage).filter(
            models.MasterCouponUsage.coupon_id == coupon.id
        ).delete(synchronize_session=False)
        self.db.delete(coupon)
        self.db.commit()
        logger.info("Deleted coupon id=%s", coupon.id)

    # ─────────────── Master coupon usage ───────────────

    def has_master_been_used(self, coupon_id: int, cart_id: str) -> bool:
        row = (
            self.db.query(models.MasterCouponUsage)
            .filter(
                models.MasterCouponUsage.coupon_id == coupon_id,
                models.MasterCouponUsage.cart_id == cart_id,
            )
            .first()
        )
        return row is not None

    def mark_master_used(self, coupon_id: int, cart_id: str) -> bool:
        """
        Record that ``coupon_id`` consumed ``cart_id``.

        Returns False when the pair was already recorded, which is how a
        caller that lost a race for the same pair finds out.
        """
        try:
            self.db.execute(
                insert(models.MasterCouponUsage).values(coupon_id=coupon_id, cart_id=cart_id)
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        logger.info("Master coupon id=%s consumed cart_id=%s", coupon_id, cart_id)
        return True

    def reset_master_usage(self, cart_id: str) -> int:
        """Admin operation: forget every master coupon usage recorded for ``cart_id``."""
        cleared = (
            self.db.query(models.MasterCouponUsage)
            .filter(models.MasterCouponUsage.cart_id == cart_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Reset %d master coupon usage record(s) for cart_id=%s", cleared, cart_id)
        return cleared
