# Overview: Flask API routes for order operations; parses input and returns JSON responses.

"""
Order / checkout routes.

Business rules live in order_service; routes only shape input. Domain errors
carry their own status_code (400 rule violation, 404 missing entity).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..models.orders import ORDER_PAYMENT_METHODS, ORDER_STATUSES, PAYMENT_STATUSES
from ..services import order_service
from ..services.ledger_service import LedgerError
from ..services.order_service import OrderError
from ..services.promotions_service import PromotionError
from ..validation import NotFoundError, ValidationError, coerce_datetime, coerce_int, require_fields
from . import datetime_arg, pagination_args

# Payment methods accepted when recording a payment against an order
ORDER_PAYMENT_UPDATE_METHODS = ("Cash", "UPI", "Card", "Cheque", "Bank Transfer")

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _domain_error(e):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


def _parse_items(raw, errors: list[dict]) -> list[dict]:
    if not isinstance(raw, list) or not raw:
        errors.append({"field": "items", "message": "At least one item is required"})
        return []
    items = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            errors.append({"field": f"items[{idx}]", "message": "Item must be an object"})
            continue
        try:
            product_id = coerce_int("product_id", item.get("product_id"))
            quantity = coerce_int("quantity", item.get("quantity"))
        except ValidationError as e:
            errors.append({"field": f"items[{idx}]", "message": str(e)})
            continue
        if quantity < 1:
            errors.append({"field": f"items[{idx}].quantity", "message": "Quantity must be at least 1"})
            continue
        items.append({"product_id": product_id, "quantity": quantity})
    return items


def _parse_create_payload(data: dict) -> dict:
    """Validate shape and types of a checkout body; collect every field error."""
    errors: list[dict] = []
    parsed: dict = {}

    try:
        parsed["customer_id"] = coerce_int("customer_id", data.get("customer_id"))
    except ValidationError:
        errors.append({"field": "customer_id", "message": "Valid customer ID is required"})

    parsed["items"] = _parse_items(data.get("items"), errors)

    for key, allowed in (
        ("payment_method", ORDER_PAYMENT_METHODS),
        ("payment_status", PAYMENT_STATUSES),
        ("order_status", ORDER_STATUSES),
    ):
        if data.get(key) is not None:
            if data[key] not in allowed:
                errors.append({"field": key, "message": f"{key} must be one of: {', '.join(allowed)}"})
            else:
                parsed[key] = data[key]

    for key in ("paid_amount_cents", "discount_amount_cents"):
        if data.get(key) is not None:
            try:
                value = coerce_int(key, data[key])
            except ValidationError as e:
                errors.append({"field": key, "message": str(e)})
                continue
            if value < 0:
                errors.append({"field": key, "message": f"{key} must be >= 0"})
            else:
                parsed[key] = value

    if data.get("delivery_address") is not None:
        if isinstance(data["delivery_address"], dict):
            parsed["delivery_address"] = data["delivery_address"]
        else:
            errors.append({"field": "delivery_address", "message": "delivery_address must be an object"})

    if data.get("delivery_date"):
        try:
            parsed["delivery_date"] = coerce_datetime("delivery_date", data["delivery_date"])
        except ValidationError as e:
            errors.append({"field": "delivery_date", "message": str(e)})

    for key in ("promotion_code", "credit_terms", "notes"):
        if data.get(key):
            parsed[key] = str(data[key]).strip()

    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return parsed


@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params: page, limit, status, payment_status, customer_id, search,
    start_date, end_date, sort_by, sort_order.
    """
    try:
        page, limit = pagination_args()
        result = order_service.list_orders(
            g.owner_id,
            page=page,
            limit=limit,
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            customer_id=request.args.get("customer_id", type=int),
            search=request.args.get("search"),
            start_date=datetime_arg("start_date"),
            end_date=datetime_arg("end_date"),
            sort_by=request.args.get("sort_by", "created_at"),
            sort_order=request.args.get("sort_order", "desc"),
        )
        return jsonify(result)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400


@orders_bp.get("/stats/overview")
@require_auth
def order_stats_route():
    period = request.args.get("period", default=30, type=int)
    return jsonify(order_service.get_order_stats(g.owner_id, period_days=max(period, 1)))


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return jsonify(order_service.get_order(g.owner_id, order_id))
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@orders_bp.post("")
@require_auth
def create_order_route():
    data = request.get_json(silent=True) or {}
    try:
        parsed = _parse_create_payload(data)
        order = order_service.create_order(owner_id=g.owner_id, **parsed)
        return jsonify({"message": "Order created successfully", "order": order}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except (OrderError, PromotionError, LedgerError) as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_auth
def update_status_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "order_status")
        order = order_service.update_status(
            owner_id=g.owner_id,
            order_id=order_id,
            order_status=data["order_status"],
            payment_status=data.get("payment_status"),
        )
        return jsonify({"message": "Order status updated successfully", "order": order})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except OrderError as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/payment")
@require_auth
def update_payment_route(order_id: int):
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "paid_amount_cents")
        paid = coerce_int("paid_amount_cents", data["paid_amount_cents"])
        if paid < 0:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "paid_amount_cents", "message": "Paid amount must be a positive number"}],
            )
        method = data.get("payment_method")
        if method is not None and method not in ORDER_PAYMENT_UPDATE_METHODS:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "payment_method", "message": "Invalid payment method"}],
            )
        order = order_service.update_payment(
            owner_id=g.owner_id,
            order_id=order_id,
            paid_amount_cents=paid,
            payment_method=method,
            notes=data.get("notes"),
        )
        return jsonify({"message": "Payment updated successfully", "order": order})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except (OrderError, LedgerError) as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to update order payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_auth
def cancel_order_route(order_id: int):
    """Cancel a Pending or Confirmed order and restore its stock."""
    try:
        order = order_service.cancel_order(owner_id=g.owner_id, order_id=order_id)
        return jsonify({"message": "Order cancelled successfully", "order": order})
    except OrderError as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
