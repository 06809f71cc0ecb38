from __future__ import annotations

from flask import Blueprint, jsonify, request, g, current_app

from ..decorators import require_auth
from ..models import Promotion
from ..models.customers import CUSTOMER_GROUPS
from ..models.inventory import PRODUCT_CATEGORIES
from ..models.promotions import PROMOTION_TYPES
from ..services import promotions_service
from ..services.promotions_service import PromotionError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_int,
    require_fields,
    validate_payload,
)
from . import bool_arg, pagination_args

PROMOTION_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "code", "promo_type", "discount_value",
        "buy_quantity", "get_quantity",
        "min_order_amount_cents", "min_order_quantity", "max_discount_amount_cents",
        "usage_limit", "usage_limit_per_customer",
        "start_date", "end_date",
        "applicable_product_ids", "applicable_categories", "applicable_customer_groups",
        "exclude_product_ids", "is_active", "is_public",
    },
    required_on_create={"name", "code", "promo_type", "discount_value", "start_date", "end_date"},
    choices={
        "promo_type": PROMOTION_TYPES,
        "applicable_categories": PRODUCT_CATEGORIES,
        "applicable_customer_groups": CUSTOMER_GROUPS,
    },
    non_negative={
        "discount_value", "buy_quantity", "get_quantity",
        "min_order_amount_cents", "min_order_quantity", "max_discount_amount_cents",
        "usage_limit", "usage_limit_per_customer",
    },
)

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


def _validated(payload, *, partial: bool) -> dict:
    patch = validate_payload(model=Promotion, payload=payload, policy=PROMOTION_POLICY, partial=partial)
    errors = []
    for key in ("applicable_product_ids", "exclude_product_ids"):
        ids = patch.get(key)
        if ids is not None and not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
            errors.append({"field": key, "message": f"{key} must be a list of product ids"})
    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return patch


@promotions_bp.route("", methods=["GET"])
@require_auth
def list_promotions():
    """Query params: page, limit, is_active, type, search."""
    page, limit = pagination_args()
    result = promotions_service.list_promotions(
        g.owner_id,
        page=page,
        limit=limit,
        is_active=bool_arg("is_active"),
        promo_type=request.args.get("type"),
        search=request.args.get("search"),
    )
    return jsonify(result)


@promotions_bp.route("/<int:promo_id>", methods=["GET"])
@require_auth
def get_promotion(promo_id: int):
    try:
        return jsonify(promotions_service.get_promotion(g.owner_id, promo_id))
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@promotions_bp.route("", methods=["POST"])
@require_auth
def create_promotion():
    data = request.get_json(silent=True) or {}
    try:
        patch = _validated(data, partial=False)
        result = promotions_service.create_promotion(owner_id=g.owner_id, patch=patch)
        return jsonify({"message": "Promotion created successfully", "promotion": result}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create promotion")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("/<int:promo_id>", methods=["PUT"])
@require_auth
def update_promotion(promo_id: int):
    data = request.get_json(silent=True) or {}
    try:
        patch = _validated(data, partial=True)
        result = promotions_service.update_promotion(owner_id=g.owner_id, promotion_id=promo_id, patch=patch)
        return jsonify({"message": "Promotion updated successfully", "promotion": result})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update promotion")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("/<int:promo_id>", methods=["DELETE"])
@require_auth
def delete_promotion(promo_id: int):
    try:
        promotions_service.delete_promotion(owner_id=g.owner_id, promotion_id=promo_id)
        return jsonify({"message": "Promotion deleted successfully"})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409


@promotions_bp.route("/validate", methods=["POST"])
@require_auth
def validate_promotion():
    """
    Check a code against a prospective order.

    Body: code, order_amount_cents, customer_id, items [{product_id, quantity}].
    Does not consume the promotion.
    """
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "code", "order_amount_cents", "customer_id", "items")
        order_amount = coerce_int("order_amount_cents", data["order_amount_cents"])
        if order_amount < 0:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "order_amount_cents", "message": "Valid order amount is required"}],
            )
        customer_id = coerce_int("customer_id", data["customer_id"])
        lines = promotions_service.lines_from_items(g.owner_id, data["items"])
        evaluation = promotions_service.validate_promotion(
            owner_id=g.owner_id,
            code=str(data["code"]),
            order_amount_cents=order_amount,
            customer_id=customer_id,
            lines=lines,
        )
        return jsonify(evaluation.to_dict())
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PromotionError as e:
        return jsonify({"valid": False, "error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to validate promotion")
        return jsonify({"error": "Internal server error"}), 500


@promotions_bp.route("/analytics/<int:promo_id>", methods=["GET"])
@require_auth
def promotion_analytics(promo_id: int):
    try:
        return jsonify(promotions_service.get_promotion_analytics(g.owner_id, promo_id))
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
