# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalog and stock routes.

TENANCY: all product operations are scoped to g.owner_id.
Stock levels change through PUT /<id>/stock (or checkout), never through the
general update route.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..models import Product
from ..models.inventory import PACK_SIZE_UNITS, PRODUCT_CATEGORIES, PRODUCT_CROP_TYPES, STOCK_OPERATIONS
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_int,
    require_fields,
    validate_payload,
)
from . import bool_arg, pagination_args

_PRODUCT_FIELDS = {
    "name", "description", "category", "subcategory", "brand",
    "price_cents", "cost_price_cents", "pack_size_value", "pack_size_unit",
    "minimum_stock", "crop_types", "batch_number", "expiry_date", "is_active",
}
_PRODUCT_CHOICES = {
    "category": PRODUCT_CATEGORIES,
    "pack_size_unit": PACK_SIZE_UNITS,
    "crop_types": PRODUCT_CROP_TYPES,
}
_NON_NEGATIVE = {"price_cents", "cost_price_cents", "stock_quantity", "minimum_stock", "pack_size_value"}

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_PRODUCT_FIELDS | {"stock_quantity"},
    required_on_create={"name", "category", "brand", "price_cents"},
    choices=_PRODUCT_CHOICES,
    non_negative=_NON_NEGATIVE,
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=_PRODUCT_FIELDS,
    choices=_PRODUCT_CHOICES,
    non_negative=_NON_NEGATIVE,
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flatten_pack_size(payload):
    """Accept {"pack_size": {"value": 5, "unit": "kg"}} as well as flat keys."""
    if not isinstance(payload, dict) or not isinstance(payload.get("pack_size"), dict):
        return payload
    data = dict(payload)
    pack = data.pop("pack_size")
    if "value" in pack:
        data["pack_size_value"] = pack["value"]
    if "unit" in pack:
        data["pack_size_unit"] = pack["unit"]
    return data


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params: page, limit, search, category, brand, crop_type,
    low_stock=true, sort_by, sort_order.
    """
    page, limit = pagination_args()
    result = products_service.list_products(
        g.owner_id,
        page=page,
        limit=limit,
        search=request.args.get("search"),
        category=request.args.get("category"),
        brand=request.args.get("brand"),
        crop_type=request.args.get("crop_type"),
        low_stock=bool_arg("low_stock", default=False),
        sort_by=request.args.get("sort_by", "created_at"),
        sort_order=request.args.get("sort_order", "desc"),
    )
    return jsonify(result)


@products_bp.get("/categories/list")
@require_auth
def list_categories_route():
    return jsonify(products_service.list_categories(g.owner_id))


@products_bp.get("/stats/overview")
@require_auth
def product_stats_route():
    return jsonify(products_service.get_product_stats(g.owner_id))


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return jsonify(products_service.get_product(g.owner_id, product_id))
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.post("")
@require_auth
def create_product_route():
    payload = _flatten_pack_size(request.get_json(silent=True) or {})
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        product = products_service.create_product(owner_id=g.owner_id, patch=patch)
        return jsonify({"message": "Product created successfully", "product": product}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = _flatten_pack_size(request.get_json(silent=True) or {})
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        product = products_service.update_product(owner_id=g.owner_id, product_id=product_id, patch=patch)
        return jsonify({"message": "Product updated successfully", "product": product})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated."""
    try:
        product = products_service.deactivate_product(owner_id=g.owner_id, product_id=product_id)
        return jsonify({"message": "Product deactivated successfully", "product": product})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.put("/<int:product_id>/stock")
@require_auth
def adjust_stock_route(product_id: int):
    """
    Body: {"operation": "add" | "subtract" | "set", "quantity": int >= 0, "reason"?: str}

    subtract and set never take stock below zero.
    """
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "operation", "quantity")
        if data["operation"] not in STOCK_OPERATIONS:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "operation", "message": "Operation must be add, subtract, or set"}],
            )
        try:
            quantity = coerce_int("quantity", data["quantity"])
        except ValidationError as e:
            raise ValidationError("Validation failed", errors=[{"field": "quantity", "message": str(e)}])
        product = products_service.adjust_stock(
            owner_id=g.owner_id,
            product_id=product_id,
            operation=data["operation"],
            quantity=quantity,
            reason=data.get("reason"),
        )
        return jsonify({"message": "Stock updated successfully", "product": product})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update stock")
        return jsonify({"error": "Internal server error"}), 500
