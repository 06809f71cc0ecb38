from __future__ import annotations

from datetime import datetime

from ..extensions import db
from agrisupply.time_utils import to_utc_z, utcnow


PROMO_PERCENTAGE = "percentage"
PROMO_FIXED_AMOUNT = "fixed_amount"
PROMO_FREE_SHIPPING = "free_shipping"
PROMO_BUY_X_GET_Y = "buy_x_get_y"
PROMOTION_TYPES = (PROMO_PERCENTAGE, PROMO_FIXED_AMOUNT, PROMO_FREE_SHIPPING, PROMO_BUY_X_GET_Y)


class Promotion(db.Model):
    """
    Promotion code and its discount rule.

    discount_value units depend on promo_type:
    - percentage: basis points (1000 = 10%)
    - fixed_amount: paise
    - free_shipping / buy_x_get_y: unused (buy_quantity/get_quantity drive BOGO)

    Targeting lists are JSON arrays: product ids, category names and
    customer groups. Codes are stored upper-cased and are unique per owner.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.UniqueConstraint("created_by_user_id", "code", name="uq_promotions_owner_code"),
        db.Index("ix_promotions_owner_active", "created_by_user_id", "is_active"),
        db.Index("ix_promotions_dates", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    code = db.Column(db.String(20), nullable=False)

    promo_type = db.Column(db.String(32), nullable=False)
    discount_value = db.Column(db.Integer, nullable=False, default=0)

    buy_quantity = db.Column(db.Integer, nullable=True)
    get_quantity = db.Column(db.Integer, nullable=True)

    min_order_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    min_order_quantity = db.Column(db.Integer, nullable=False, default=0)
    max_discount_amount_cents = db.Column(db.Integer, nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    usage_limit_per_customer = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)

    applicable_product_ids = db.Column(db.JSON, nullable=False, default=list)
    applicable_categories = db.Column(db.JSON, nullable=False, default=list)
    applicable_customer_groups = db.Column(db.JSON, nullable=False, default=list)
    exclude_product_ids = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_public = db.Column(db.Boolean, nullable=False, default=True)

    # Analytics, bumped when an order using the code is confirmed
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (
            bool(self.is_active)
            and self.start_date <= now <= self.end_date
            and (not self.usage_limit or self.usage_count < self.usage_limit)
        )

    def can_use(self, customer_group: str | None, order_amount_cents: int, order_quantity: int,
                now: datetime | None = None) -> bool:
        if not self.is_valid(now):
            return False
        if order_amount_cents < (self.min_order_amount_cents or 0):
            return False
        if order_quantity < (self.min_order_quantity or 0):
            return False
        groups = self.applicable_customer_groups or []
        if groups and customer_group not in groups:
            return False
        return True

    def summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "type": self.promo_type,
            "value": self.discount_value,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "code": self.code,
            "promo_type": self.promo_type,
            "discount_value": self.discount_value,
            "buy_quantity": self.buy_quantity,
            "get_quantity": self.get_quantity,
            "min_order_amount_cents": self.min_order_amount_cents,
            "min_order_quantity": self.min_order_quantity,
            "max_discount_amount_cents": self.max_discount_amount_cents,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "usage_limit_per_customer": self.usage_limit_per_customer,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "applicable_product_ids": list(self.applicable_product_ids or []),
            "applicable_categories": list(self.applicable_categories or []),
            "applicable_customer_groups": list(self.applicable_customer_groups or []),
            "exclude_product_ids": list(self.exclude_product_ids or []),
            "is_active": self.is_active,
            "is_public": self.is_public,
            "total_orders": self.total_orders,
            "total_revenue_cents": self.total_revenue_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
