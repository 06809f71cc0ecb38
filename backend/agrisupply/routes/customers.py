# Overview: Flask API routes for customer operations; parses input and returns JSON responses.

"""
Customer routes.

TENANCY: every route is scoped to g.owner_id (set by @require_auth).
Clients may send the address nested ({"address": {...}}) or flat.
"""

import re

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..models import Customer
from ..models.customers import BUSINESS_TYPES, CROP_TYPES, CUSTOMER_GROUPS
from ..services import customer_service
from ..validation import ModelValidationPolicy, NotFoundError, ValidationError, validate_payload
from . import bool_arg, pagination_args

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "email", "phone", "alternate_phone",
        "street", "city", "state", "pincode", "landmark",
        "business_type", "crop_types", "customer_group",
        "credit_limit_cents", "payment_terms_days", "notes", "is_active",
    },
    required_on_create={"name", "phone"},
    choices={
        "business_type": BUSINESS_TYPES,
        "crop_types": CROP_TYPES,
        "customer_group": CUSTOMER_GROUPS,
    },
    non_negative={"credit_limit_cents", "payment_terms_days"},
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _validated(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(
        model=Customer,
        payload=customer_service.flatten_address(payload),
        policy=CUSTOMER_POLICY,
        partial=partial,
    )
    if patch.get("email") and not EMAIL_RE.match(patch["email"]):
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "email", "message": "Please provide a valid email"}],
        )
    return patch


@customers_bp.get("")
@require_auth
def list_customers_route():
    """
    Query params: page, limit, search, business_type, customer_group,
    is_active (default true; empty string lists all).
    """
    page, limit = pagination_args()
    is_active = bool_arg("is_active", default=None if request.args.get("is_active") == "" else True)
    result = customer_service.list_customers(
        g.owner_id,
        page=page,
        limit=limit,
        search=request.args.get("search"),
        business_type=request.args.get("business_type"),
        customer_group=request.args.get("customer_group"),
        is_active=is_active,
    )
    return jsonify(result)


@customers_bp.get("/stats/overview")
@require_auth
def customer_stats_route():
    return jsonify(customer_service.get_customer_stats(g.owner_id))


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        return jsonify(customer_service.get_customer(g.owner_id, customer_id))
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@customers_bp.post("")
@require_auth
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = _validated(payload, partial=False)
        customer = customer_service.create_customer(owner_id=g.owner_id, patch=patch)
        return jsonify({"message": "Customer created successfully", "customer": customer}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = _validated(payload, partial=True)
        customer = customer_service.update_customer(owner_id=g.owner_id, customer_id=customer_id, patch=patch)
        return jsonify({"message": "Customer updated successfully", "customer": customer})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    """Soft delete: the customer is deactivated, history is kept."""
    try:
        customer = customer_service.deactivate_customer(owner_id=g.owner_id, customer_id=customer_id)
        return jsonify({"message": "Customer deactivated successfully", "customer": customer})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
