# Overview: Promotion codes; eligibility checks, discount calculation, CRUD and usage analytics.

"""
Promotion Evaluation Service

validate_promotion() runs the eligibility checks in a fixed order and stops
at the first failure. It never writes: usage counters are only bumped by
record_usage(), which order_service calls when an order is first Confirmed.

Discount arithmetic lives in calculate_discount(), a pure function over
PromotionLine values.

UNITS:
- percentage discount_value is in basis points (1000 = 10%)
- fixed_amount discount_value and every *_cents field are paise
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Order, OrderPromotion, Product, Promotion
from ..models.orders import STATUS_CANCELLED, STATUS_CONFIRMED, STATUS_DELIVERED, STATUS_PROCESSING, STATUS_SHIPPED
from ..models.promotions import PROMO_BUY_X_GET_Y, PROMO_FIXED_AMOUNT, PROMO_PERCENTAGE
from ..validation import ConflictError, NotFoundError, ValidationError
from agrisupply.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)

BASIS_POINTS = 10_000

# Orders counted as a real use of a promotion in analytics
USED_ORDER_STATUSES = (STATUS_CONFIRMED, STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED)


class PromotionError(Exception):
    """Raised when a promotion code cannot be applied."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


@dataclass(frozen=True)
class PromotionLine:
    """One order line as seen by the discount calculator."""
    product_id: int
    quantity: int
    unit_price_cents: int
    category: str | None = None

    @property
    def total_price_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class PromotionEvaluation:
    promotion: Promotion
    discount_cents: int
    applicable_amount_cents: int

    def to_dict(self) -> dict:
        return {
            "valid": True,
            "promotion": self.promotion.summary(),
            "discount_amount_cents": self.discount_cents,
            "applicable_amount_cents": self.applicable_amount_cents,
            "message": f"Promotion applied! You saved ₹{self.discount_cents / 100:.2f}",
        }


# =============================================================================
# DISCOUNT ARITHMETIC
# =============================================================================

def applicable_lines(promotion: Promotion, lines: list[PromotionLine]) -> list[PromotionLine]:
    """
    Lines the promotion applies to.

    A product allowlist takes precedence over a category allowlist; only one
    of the two is applied. Excluded products are dropped last.
    """
    product_ids = set(promotion.applicable_product_ids or [])
    categories = set(promotion.applicable_categories or [])
    excluded = set(promotion.exclude_product_ids or [])

    result = list(lines)
    if product_ids:
        result = [line for line in result if line.product_id in product_ids]
    elif categories:
        result = [line for line in result if line.category in categories]
    if excluded:
        result = [line for line in result if line.product_id not in excluded]
    return result


def calculate_discount(promotion: Promotion, lines: list[PromotionLine]) -> tuple[int, int]:
    """
    Returns (discount_cents, applicable_amount_cents).

    buy_x_get_y gives floor(qty / buy) * get units free, cheapest units first.
    """
    eligible = applicable_lines(promotion, lines)
    applicable_amount = sum(line.total_price_cents for line in eligible)

    discount = 0
    if promotion.promo_type == PROMO_PERCENTAGE:
        # Round half up to a whole paisa
        discount = (applicable_amount * promotion.discount_value + BASIS_POINTS // 2) // BASIS_POINTS
    elif promotion.promo_type == PROMO_FIXED_AMOUNT:
        discount = min(promotion.discount_value, applicable_amount)
    elif promotion.promo_type == PROMO_BUY_X_GET_Y:
        buy = promotion.buy_quantity or 0
        get = promotion.get_quantity or 0
        if buy > 0 and get > 0:
            total_quantity = sum(line.quantity for line in eligible)
            free_units = (total_quantity // buy) * get
            for line in sorted(eligible, key=lambda ln: ln.unit_price_cents):
                if free_units <= 0:
                    break
                free_here = min(free_units, line.quantity)
                discount += free_here * line.unit_price_cents
                free_units -= free_here
    # free_shipping: no line discount

    if promotion.max_discount_amount_cents and discount > promotion.max_discount_amount_cents:
        discount = promotion.max_discount_amount_cents

    return discount, applicable_amount


# =============================================================================
# VALIDATION
# =============================================================================

def get_promotion_by_code(owner_id: int, code: str) -> Promotion | None:
    return db.session.query(Promotion).filter_by(
        created_by_user_id=owner_id, code=(code or "").strip().upper()
    ).first()


def customer_usage_count(promotion: Promotion, customer_id: int) -> int:
    """Orders of this customer carrying the promotion, excluding cancelled ones."""
    return (
        db.session.query(func.count(Order.id))
        .join(OrderPromotion, OrderPromotion.order_id == Order.id)
        .filter(
            OrderPromotion.promotion_id == promotion.id,
            Order.customer_id == customer_id,
            Order.order_status != STATUS_CANCELLED,
        )
        .scalar()
    ) or 0


def lines_from_items(owner_id: int, items: list[dict]) -> list[PromotionLine]:
    """
    Build calculator lines from request items ({product_id, quantity}).

    Prices and categories come from the catalog, not from the client.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Validation failed", errors=[{"field": "items", "message": "Order items are required"}])

    product_ids = set()
    for idx, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("product_id"), int) \
                or not isinstance(item.get("quantity"), int) or item["quantity"] < 1:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": f"items[{idx}]", "message": "product_id and quantity >= 1 are required"}],
            )
        product_ids.add(item["product_id"])

    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.id.in_(product_ids), Product.created_by_user_id == owner_id
        )
    }

    lines = []
    for item in items:
        product = products.get(item["product_id"])
        if product is None:
            raise NotFoundError(f"Product {item['product_id']} not found")
        lines.append(PromotionLine(
            product_id=product.id,
            quantity=item["quantity"],
            unit_price_cents=product.price_cents,
            category=product.category,
        ))
    return lines


def validate_promotion(
    *,
    owner_id: int,
    code: str,
    order_amount_cents: int,
    customer_id: int,
    lines: list[PromotionLine],
    now: datetime | None = None,
) -> PromotionEvaluation:
    """
    Check a promotion code against an order and compute its discount.

    Read-only. Raises PromotionError with status_code 404 for an unknown code
    or customer, 400 for any rule failure.
    """
    now = now or utcnow()

    promotion = get_promotion_by_code(owner_id, code)
    if not promotion:
        raise PromotionError("Invalid promotion code", status_code=404)

    if not promotion.is_valid(now):
        raise PromotionError("Promotion is not active or has expired")

    customer = db.session.query(Customer).filter_by(id=customer_id, created_by_user_id=owner_id).first()
    if not customer:
        raise PromotionError("Customer not found", status_code=404)

    order_quantity = sum(line.quantity for line in lines)
    if not promotion.can_use(customer.customer_group, order_amount_cents, order_quantity, now):
        raise PromotionError(
            "Promotion requirements not met",
            details={
                "min_order_amount_cents": promotion.min_order_amount_cents,
                "min_order_quantity": promotion.min_order_quantity,
                "applicable_customer_groups": list(promotion.applicable_customer_groups or []),
            },
        )

    if promotion.usage_limit_per_customer:
        used = customer_usage_count(promotion, customer.id)
        if used >= promotion.usage_limit_per_customer:
            raise PromotionError(
                "Promotion usage limit exceeded for this customer",
                details={"used": used, "limit": promotion.usage_limit_per_customer},
            )

    discount, applicable_amount = calculate_discount(promotion, lines)
    return PromotionEvaluation(
        promotion=promotion,
        discount_cents=discount,
        applicable_amount_cents=applicable_amount,
    )


def record_usage(promotion_id: int, order_total_cents: int) -> None:
    """Bump usage and analytics counters. Runs in the caller's transaction."""
    promotion = lock_for_update(db.session.query(Promotion).filter_by(id=promotion_id)).first()
    if promotion is None:
        return
    promotion.usage_count = (promotion.usage_count or 0) + 1
    promotion.total_orders = (promotion.total_orders or 0) + 1
    promotion.total_revenue_cents = (promotion.total_revenue_cents or 0) + order_total_cents


# =============================================================================
# CRUD
# =============================================================================

def _check_invariants(promotion: Promotion) -> None:
    errors = []
    if promotion.start_date and promotion.end_date and promotion.start_date >= promotion.end_date:
        errors.append({"field": "end_date", "message": "end_date must be after start_date"})
    if promotion.promo_type == PROMO_BUY_X_GET_Y:
        for key in ("buy_quantity", "get_quantity"):
            value = getattr(promotion, key)
            if not value or value < 1:
                errors.append({"field": key, "message": f"{key} is required for buy_x_get_y promotions"})
    if promotion.promo_type == PROMO_PERCENTAGE and (promotion.discount_value or 0) > BASIS_POINTS:
        errors.append({"field": "discount_value", "message": "Percentage cannot exceed 10000 basis points"})
    if errors:
        raise ValidationError("Validation failed", errors=errors)


def _ensure_code_available(owner_id: int, code: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Promotion.id).filter_by(created_by_user_id=owner_id, code=code)
    if exclude_id is not None:
        query = query.filter(Promotion.id != exclude_id)
    if query.first():
        raise ConflictError("Promotion code already exists")


def _get_owned(owner_id: int, promotion_id: int) -> Promotion:
    promotion = db.session.query(Promotion).filter_by(id=promotion_id, created_by_user_id=owner_id).first()
    if not promotion:
        raise NotFoundError("Promotion not found")
    return promotion


def list_promotions(
    owner_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    is_active: bool | None = None,
    promo_type: str | None = None,
    search: str | None = None,
) -> dict:
    query = db.session.query(Promotion).filter_by(created_by_user_id=owner_id)
    if is_active is not None:
        query = query.filter(Promotion.is_active.is_(is_active))
    if promo_type:
        query = query.filter(Promotion.promo_type == promo_type)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Promotion.name.ilike(like),
            Promotion.code.ilike(like),
            Promotion.description.ilike(like),
        ))

    total = query.count()
    promotions = (
        query.order_by(Promotion.created_at.desc(), Promotion.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "promotions": [p.to_dict() for p in promotions],
        "total": total,
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
    }


def get_promotion(owner_id: int, promotion_id: int) -> dict:
    return _get_owned(owner_id, promotion_id).to_dict()


def create_promotion(*, owner_id: int, patch: dict) -> dict:
    patch = dict(patch)
    patch["code"] = patch["code"].upper()
    _ensure_code_available(owner_id, patch["code"])

    promotion = Promotion(created_by_user_id=owner_id, **patch)
    _check_invariants(promotion)

    db.session.add(promotion)
    db.session.commit()
    logger.info("Promotion %s created for owner %s", promotion.code, owner_id)
    return promotion.to_dict()


def update_promotion(*, owner_id: int, promotion_id: int, patch: dict) -> dict:
    promotion = _get_owned(owner_id, promotion_id)

    if "code" in patch:
        patch = dict(patch, code=patch["code"].upper())
        if patch["code"] != promotion.code:
            _ensure_code_available(owner_id, patch["code"], exclude_id=promotion.id)

    for key, value in patch.items():
        setattr(promotion, key, value)

    try:
        _check_invariants(promotion)
    except ValidationError:
        db.session.rollback()
        raise

    db.session.commit()
    return promotion.to_dict()


def delete_promotion(*, owner_id: int, promotion_id: int) -> None:
    """
    Delete an unused promotion.

    Promotions already applied to orders are kept for the order history;
    deactivate those instead.
    """
    promotion = _get_owned(owner_id, promotion_id)
    in_use = db.session.query(OrderPromotion.id).filter_by(promotion_id=promotion.id).first()
    if in_use:
        raise ConflictError("Promotion has been applied to orders; deactivate it instead")
    db.session.delete(promotion)
    db.session.commit()


def get_promotion_analytics(owner_id: int, promotion_id: int) -> dict:
    promotion = _get_owned(owner_id, promotion_id)

    rows = (
        db.session.query(Order, OrderPromotion.discount_cents)
        .join(OrderPromotion, OrderPromotion.order_id == Order.id)
        .filter(
            OrderPromotion.promotion_id == promotion.id,
            Order.created_by_user_id == owner_id,
            Order.order_status.in_(USED_ORDER_STATUSES),
        )
        .order_by(Order.created_at.asc())
        .all()
    )

    total_revenue = sum(order.total_amount_cents for order, _ in rows)
    total_discount = sum(discount or 0 for _, discount in rows)
    groups = Counter(order.customer.customer_group if order.customer else "unknown" for order, _ in rows)
    daily = Counter(to_utc_z(order.created_at)[:10] for order, _ in rows)

    return {
        "promotion": promotion.to_dict(),
        "analytics": {
            "total_usage": len(rows),
            "total_revenue_cents": total_revenue,
            "total_discount_cents": total_discount,
            "average_order_value_cents": total_revenue // len(rows) if rows else 0,
            "customer_breakdown": dict(groups),
            "daily_usage": dict(daily),
        },
    }
