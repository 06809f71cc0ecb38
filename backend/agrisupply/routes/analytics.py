# Overview: Flask API routes for analytics; parses input and returns JSON responses.

"""
Analytics Routes

Provides the analytics landing summary plus sales, product, customer and
inventory reports. Reports count orders at or past confirmation; start/end
are optional ISO-8601 bounds on order creation time.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import reporting_service
from ..services.reporting_service import ReportError
from . import limit_arg


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


@analytics_bp.get("/dashboard")
@require_auth
def analytics_dashboard_route():
    period = request.args.get("period", default=30, type=int)
    try:
        return jsonify(reporting_service.analytics_dashboard(g.owner_id, period_days=period))
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@analytics_bp.get("/sales")
@require_auth
def sales_analytics_route():
    """Query params: start, end, group_by (hour|day|week|month), category, payment_method."""
    try:
        result = reporting_service.sales_report(
            g.owner_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
            group_by=request.args.get("group_by", "day"),
            category=request.args.get("category") or None,
            payment_method=request.args.get("payment_method") or None,
        )
        return jsonify(result)
    except ReportError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to build sales report")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.get("/products")
@require_auth
def product_analytics_route():
    """Query params: start, end, category, sort_by (revenue|quantity|orders), limit."""
    try:
        result = reporting_service.product_report(
            g.owner_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
            category=request.args.get("category") or None,
            sort_by=request.args.get("sort_by", "revenue"),
            limit=limit_arg(20),
        )
        return jsonify(result)
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@analytics_bp.get("/customers")
@require_auth
def customer_analytics_route():
    """Query params: start, end, customer_group, sort_by (revenue|orders|frequency), limit."""
    try:
        result = reporting_service.customer_report(
            g.owner_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
            customer_group=request.args.get("customer_group") or None,
            sort_by=request.args.get("sort_by", "revenue"),
            limit=limit_arg(20),
        )
        return jsonify(result)
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@analytics_bp.get("/inventory")
@require_auth
def inventory_analytics_route():
    return jsonify(reporting_service.inventory_report(g.owner_id))
