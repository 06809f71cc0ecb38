# backend/agrisupply/services/products_service.py
"""
Products Service

TENANCY: every query is filtered on created_by_user_id. A product owned by
another user behaves exactly like a missing one.

Deleting a product only deactivates it; order items keep pointing at it.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product
from ..models.inventory import STOCK_OPERATIONS
from ..validation import NotFoundError, ValidationError
from agrisupply.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": Product.created_at,
    "name": Product.name,
    "price_cents": Product.price_cents,
    "stock_quantity": Product.stock_quantity,
}


def _get_owned(owner_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, created_by_user_id=owner_id).first()
    if not product:
        raise NotFoundError("Product not found")
    return product


def list_products(
    owner_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    category: str | None = None,
    brand: str | None = None,
    crop_type: str | None = None,
    low_stock: bool = False,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> dict:
    """
    Active products, newest first by default.

    crop_type is matched in Python against the JSON list column, so it is
    applied before pagination on the filtered id set.
    """
    query = db.session.query(Product).filter(
        Product.created_by_user_id == owner_id, Product.is_active.is_(True)
    )
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(like),
            Product.description.ilike(like),
            Product.brand.ilike(like),
        ))
    if category:
        query = query.filter(Product.category == category)
    if brand:
        query = query.filter(Product.brand.ilike(f"%{brand.strip()}%"))
    if low_stock:
        query = query.filter(Product.stock_quantity <= Product.minimum_stock)
    if crop_type:
        ids = [p.id for p in query.all() if crop_type in (p.crop_types or [])]
        query = db.session.query(Product).filter(Product.id.in_(ids))

    column = SORTABLE_FIELDS.get(sort_by, Product.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()

    total = query.count()
    products = query.order_by(ordering, Product.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "products": [p.to_dict() for p in products],
        "total": total,
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
    }


def get_product(owner_id: int, product_id: int) -> dict:
    return _get_owned(owner_id, product_id).to_dict()


def create_product(*, owner_id: int, patch: dict) -> dict:
    product = Product(created_by_user_id=owner_id, **patch)
    if product.stock_quantity:
        product.last_restock_date = utcnow()
    db.session.add(product)
    db.session.commit()
    return product.to_dict()


def update_product(*, owner_id: int, product_id: int, patch: dict) -> dict:
    def _op():
        product = _get_owned(owner_id, product_id)
        for key, value in patch.items():
            setattr(product, key, value)
        db.session.commit()
        return product.to_dict()

    return run_with_retry(_op)


def deactivate_product(*, owner_id: int, product_id: int) -> dict:
    product = _get_owned(owner_id, product_id)
    product.is_active = False
    db.session.commit()
    return product.to_dict()


def adjust_stock(*, owner_id: int, product_id: int, operation: str, quantity: int, reason: str | None = None) -> dict:
    """
    Change on-hand stock.

    add: stock + quantity
    subtract: max(0, stock - quantity)
    set: quantity
    """
    if operation not in STOCK_OPERATIONS:
        raise ValidationError(
            "Operation must be add, subtract, or set",
            errors=[{"field": "operation", "message": "Operation must be add, subtract, or set"}],
        )
    if quantity < 0:
        raise ValidationError(
            "Quantity cannot be negative",
            errors=[{"field": "quantity", "message": "Quantity cannot be negative"}],
        )

    def _op():
        product = lock_for_update(
            db.session.query(Product).filter_by(id=product_id, created_by_user_id=owner_id)
        ).first()
        if not product:
            raise NotFoundError("Product not found")

        before = product.stock_quantity
        if operation == "add":
            after = before + quantity
        elif operation == "subtract":
            after = max(0, before - quantity)
        else:
            after = max(0, quantity)

        product.stock_quantity = after
        if after > before:
            product.last_restock_date = utcnow()
        db.session.commit()
        logger.info(
            "Stock %s on product %s: %s -> %s (%s)", operation, product.id, before, after, reason or "no reason",
        )
        return product.to_dict()

    return run_with_retry(_op)


def list_categories(owner_id: int) -> dict:
    """Distinct categories, subcategories, brands and crop types in use."""
    active = (Product.created_by_user_id == owner_id, Product.is_active.is_(True))

    def _distinct(column):
        rows = db.session.query(column).filter(*active).distinct().order_by(column).all()
        return [value for (value,) in rows if value]

    crop_types = set()
    for (values,) in db.session.query(Product.crop_types).filter(*active).all():
        crop_types.update(values or [])

    return {
        "categories": _distinct(Product.category),
        "subcategories": _distinct(Product.subcategory),
        "brands": _distinct(Product.brand),
        "crop_types": sorted(crop_types),
    }


def get_product_stats(owner_id: int) -> dict:
    active = (Product.created_by_user_id == owner_id, Product.is_active.is_(True))

    total = db.session.query(func.count(Product.id)).filter(*active).scalar()
    low_stock = (
        db.session.query(func.count(Product.id))
        .filter(*active, Product.stock_quantity <= Product.minimum_stock)
        .scalar()
    )
    out_of_stock = (
        db.session.query(func.count(Product.id))
        .filter(*active, Product.stock_quantity == 0)
        .scalar()
    )
    count = func.count(Product.id)
    per_category = (
        db.session.query(
            Product.category,
            count,
            func.coalesce(func.sum(Product.price_cents * Product.stock_quantity), 0),
        )
        .filter(*active)
        .group_by(Product.category)
        .order_by(count.desc(), Product.category)
        .all()
    )

    return {
        "total_products": total,
        "low_stock_products": low_stock,
        "out_of_stock_products": out_of_stock,
        "category_stats": [
            {"category": category, "count": n, "total_value_cents": int(value or 0)}
            for category, n, value in per_category
        ],
    }
