# Overview: Flask API routes for dashboard widgets; parses input and returns JSON responses.

"""
Dashboard Routes

Small owner-scoped widgets for the landing screen. Revenue figures count
Confirmed and Delivered orders over the last `period` days (default 30).
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..services import reporting_service
from ..services.reporting_service import ReportError
from . import limit_arg


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


def _period() -> int:
    return request.args.get("period", default=30, type=int)


@dashboard_bp.get("/overview")
@require_auth
def overview_route():
    try:
        return jsonify(reporting_service.dashboard_overview(g.owner_id, period_days=_period()))
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@dashboard_bp.get("/sales-chart")
@require_auth
def sales_chart_route():
    """Query params: period, group_by (day|week|month)."""
    try:
        rows = reporting_service.sales_chart(
            g.owner_id,
            period_days=_period(),
            group_by=request.args.get("group_by", "day"),
        )
        return jsonify({"sales": rows})
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@dashboard_bp.get("/top-products")
@require_auth
def top_products_route():
    try:
        start = reporting_service.period_start(_period())
        rows = reporting_service.top_products(g.owner_id, start=start, limit=limit_arg(10))
        return jsonify({"products": rows})
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@dashboard_bp.get("/top-customers")
@require_auth
def top_customers_route():
    try:
        start = reporting_service.period_start(_period())
        rows = reporting_service.top_customers(g.owner_id, start=start, limit=limit_arg(10))
        return jsonify({"customers": rows})
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@dashboard_bp.get("/category-performance")
@require_auth
def category_performance_route():
    try:
        start = reporting_service.period_start(_period())
        return jsonify({"categories": reporting_service.category_performance(g.owner_id, start=start)})
    except ReportError as e:
        return jsonify({"error": str(e)}), 400


@dashboard_bp.get("/recent-orders")
@require_auth
def recent_orders_route():
    return jsonify({"orders": reporting_service.recent_orders(g.owner_id, limit=limit_arg(10))})


@dashboard_bp.get("/low-stock-alerts")
@require_auth
def low_stock_alerts_route():
    return jsonify({"products": reporting_service.low_stock_products(g.owner_id)})
