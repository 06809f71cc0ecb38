# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

"""
Customer credit ledger routes.

Amounts are integer paise. Ledger entries are append-only: there is no update
or delete route; corrections are posted through /<entry_id>/adjustment.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..models.customers import LEDGER_PAYMENT_METHODS
from ..services import ledger_service
from ..services.ledger_service import CHARGE_TYPES, LedgerError
from ..validation import (
    MAX_AMOUNT_CENTS,
    ValidationError,
    coerce_datetime,
    coerce_int,
    positive_amount,
    require_fields,
)
from . import pagination_args

# Manual payments may not use the internal "Adjustment" method
PAYMENT_ROUTE_METHODS = tuple(m for m in LEDGER_PAYMENT_METHODS if m != "Adjustment")

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _domain_error(e: LedgerError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


def _text(data: dict, key: str, max_length: int, *, required: bool = False) -> str | None:
    value = data.get(key)
    if value is None or str(value).strip() == "":
        if required:
            raise ValidationError(
                "Validation failed", errors=[{"field": key, "message": f"{key.capitalize()} is required"}]
            )
        return None
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(
            "Validation failed", errors=[{"field": key, "message": f"{key} exceeds max length {max_length}"}]
        )
    return value


def _id(data: dict, key: str) -> int:
    try:
        return coerce_int(key, data.get(key))
    except ValidationError:
        raise ValidationError("Validation failed", errors=[{"field": key, "message": f"Valid {key} is required"}])


def _optional_datetime(data: dict, key: str):
    if not data.get(key):
        return None
    try:
        return coerce_datetime(key, data[key])
    except ValidationError as e:
        raise ValidationError("Validation failed", errors=[{"field": key, "message": str(e)}])


@ledger_bp.get("/customer/<int:customer_id>")
@require_auth
def customer_ledger_route(customer_id: int):
    page, limit = pagination_args()
    try:
        return jsonify(ledger_service.list_customer_ledger(
            owner_id=g.owner_id, customer_id=customer_id, page=page, limit=limit
        ))
    except LedgerError as e:
        return _domain_error(e)


@ledger_bp.post("/payment")
@require_auth
def record_payment_route():
    """
    Record a payment against a customer account.

    Body: customer_id, amount_cents > 0, payment_method, description,
    payment_reference?, notes?, order_id?. Without order_id the payment is
    allocated to open orders oldest first.
    """
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "customer_id", "amount_cents", "payment_method", "description")
        if data["payment_method"] not in PAYMENT_ROUTE_METHODS:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "payment_method", "message": "Invalid payment method"}],
            )
        result = ledger_service.record_payment(
            owner_id=g.owner_id,
            customer_id=_id(data, "customer_id"),
            amount_cents=positive_amount("amount_cents", data["amount_cents"]),
            payment_method=data["payment_method"],
            description=_text(data, "description", 500, required=True),
            payment_reference=_text(data, "payment_reference", 100),
            notes=_text(data, "notes", 500),
            order_id=_id(data, "order_id") if data.get("order_id") is not None else None,
        )
        return jsonify({
            "message": "Payment recorded successfully",
            "ledger_entry": result["ledger_entry"],
            "new_balance_cents": result["new_balance_cents"],
            "customer_balance_cents": result["new_balance_cents"],
            "allocations": result["allocations"],
        }), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except LedgerError as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.post("/credit-sale")
@require_auth
def record_credit_sale_route():
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "customer_id", "order_id", "amount_cents")
        result = ledger_service.record_credit_sale(
            owner_id=g.owner_id,
            customer_id=_id(data, "customer_id"),
            order_id=_id(data, "order_id"),
            amount_cents=positive_amount("amount_cents", data["amount_cents"]),
            due_date=_optional_datetime(data, "due_date"),
            notes=_text(data, "notes", 500),
        )
        return jsonify({
            "message": "Credit sale recorded successfully",
            "ledger_entry": result["ledger_entry"],
            "new_balance_cents": result["new_balance_cents"],
        }), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except LedgerError as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to record credit sale")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.post("/charge")
@require_auth
def record_charge_route():
    """Post interest or a penalty. Body: customer_id, transaction_type, amount_cents, description."""
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "customer_id", "transaction_type", "amount_cents", "description")
        if data["transaction_type"] not in CHARGE_TYPES:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "transaction_type", "message": f"transaction_type must be one of: {', '.join(CHARGE_TYPES)}"}],
            )
        result = ledger_service.record_charge(
            owner_id=g.owner_id,
            customer_id=_id(data, "customer_id"),
            transaction_type=data["transaction_type"],
            amount_cents=positive_amount("amount_cents", data["amount_cents"]),
            description=_text(data, "description", 500, required=True),
            due_date=_optional_datetime(data, "due_date"),
            notes=_text(data, "notes", 500),
        )
        return jsonify({
            "message": "Charge recorded successfully",
            "ledger_entry": result["ledger_entry"],
            "new_balance_cents": result["new_balance_cents"],
        }), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except LedgerError as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to record charge")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.put("/<int:entry_id>/adjustment")
@require_auth
def record_adjustment_route(entry_id: int):
    """Body: amount_cents (signed, non-zero), description, notes?"""
    data = request.get_json(silent=True) or {}
    try:
        require_fields(data, "amount_cents", "description")
        amount = coerce_int("amount_cents", data["amount_cents"])
        if amount == 0 or abs(amount) > MAX_AMOUNT_CENTS:
            raise ValidationError(
                "Validation failed",
                errors=[{"field": "amount_cents", "message": "Valid amount is required"}],
            )
        result = ledger_service.record_adjustment(
            owner_id=g.owner_id,
            entry_id=entry_id,
            amount_cents=amount,
            description=_text(data, "description", 500, required=True),
            notes=_text(data, "notes", 500),
        )
        return jsonify({
            "message": "Adjustment recorded successfully",
            "adjustment_entry": result["ledger_entry"],
            "new_balance_cents": result["new_balance_cents"],
        })
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except LedgerError as e:
        return _domain_error(e)
    except Exception:
        current_app.logger.exception("Failed to record adjustment")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/overdue")
@require_auth
def overdue_customers_route():
    customers = ledger_service.get_overdue_customers(g.owner_id)
    return jsonify({
        "overdue_customers": customers,
        "total_overdue_cents": sum(c["total_overdue_cents"] for c in customers),
        "count": len(customers),
    })


@ledger_bp.get("/summary")
@require_auth
def ledger_summary_route():
    period = request.args.get("period", default=30, type=int)
    return jsonify(ledger_service.get_ledger_summary(g.owner_id, period_days=max(period, 1)))
