# Overview: Pytest coverage for dashboard widgets and analytics reports.

from datetime import timedelta

import pytest

from agrisupply.models import Product
from agrisupply.services import order_service, reporting_service
from agrisupply.services.reporting_service import ReportError
from agrisupply.time_utils import utcnow

from conftest import auth_headers


def _order(owner, customer, *lines, status="Confirmed", method="Cash"):
    return order_service.create_order(
        owner_id=owner.id,
        customer_id=customer.id,
        items=[{"product_id": p.id, "quantity": q} for p, q in lines],
        payment_method=method,
        order_status=status,
    )


@pytest.fixture
def shop(db_session, owner, make_customer, make_product):
    """Two customers, three products and a mix of confirmed and pending orders."""
    ganesh = make_customer(owner, name="Ganesh More", phone="9822000001")
    sunita = make_customer(owner, name="Sunita Pawar", phone="9822000002", customer_group="vip")
    seed = make_product(owner, name="Hybrid Paddy Seed", price_cents=5000, stock_quantity=100)
    urea = make_product(
        owner, name="Urea 45kg", category="Fertilizers", brand="IFFCO",
        price_cents=26600, stock_quantity=50, cost_price_cents=24000,
    )
    make_product(owner, name="Knapsack Sprayer", category="Equipment", price_cents=180000, stock_quantity=0)

    _order(owner, ganesh, (seed, 3), (urea, 1))
    _order(owner, ganesh, (seed, 2))
    _order(owner, sunita, (urea, 2), status="Processing", method="UPI")
    _order(owner, sunita, (urea, 10), status="Pending")
    return {"ganesh": ganesh, "sunita": sunita, "seed": seed, "urea": urea}


class TestDashboard:
    def test_overview_counts(self, db_session, owner, shop):
        overview = reporting_service.dashboard_overview(owner.id)

        assert overview["customers"] == {"total": 2, "new": 2}
        assert overview["products"]["total"] == 3
        assert overview["products"]["out_of_stock"] == 1
        assert overview["products"]["low_stock"] == 1
        assert overview["orders"]["total"] == 4
        # Pending, Confirmed and Processing orders are still open
        assert overview["orders"]["pending"] == 4
        # Revenue counts Confirmed and Delivered only
        assert overview["revenue"]["total_cents"] == 15000 + 26600 + 10000
        assert overview["revenue"]["average_cents"] == (51600 + 1) // 2

    def test_top_products_by_quantity(self, db_session, owner, shop):
        rows = reporting_service.top_products(owner.id)

        assert [r["name"] for r in rows] == ["Hybrid Paddy Seed", "Urea 45kg"]
        assert rows[0]["total_quantity"] == 5
        assert rows[0]["total_revenue_cents"] == 25000
        assert rows[0]["order_count"] == 2
        assert rows[1]["profit_margin_pct"] == round((26600 - 24000) / 26600 * 100.0, 2)
        assert rows[0]["profit_margin_pct"] is None

    def test_top_customers_and_categories(self, db_session, owner, shop):
        customers = reporting_service.top_customers(owner.id)
        assert [c["name"] for c in customers] == ["Ganesh More"]
        assert customers[0]["total_spent_cents"] == 51600
        assert customers[0]["days_since_last_order"] == 0

        categories = reporting_service.category_performance(owner.id)
        assert [c["category"] for c in categories] == ["Fertilizers", "Seeds"]
        assert categories[1]["order_count"] == 2

    def test_sales_chart_and_recent_orders(self, db_session, owner, shop):
        rows = reporting_service.sales_chart(owner.id, period_days=7)
        assert sum(r["order_count"] for r in rows) == 2
        assert sum(r["total_items"] for r in rows) == 3

        recent = reporting_service.recent_orders(owner.id, limit=2)
        assert [o["order_number"] for o in recent] == ["ORD-000004", "ORD-000003"]

    def test_low_stock_alerts_sorted_by_stock(self, db_session, owner, shop, make_product):
        make_product(owner, name="Zinc Sulphate", stock_quantity=4, minimum_stock=5)
        alerts = reporting_service.low_stock_products(owner.id)
        assert [a["name"] for a in alerts] == ["Knapsack Sprayer", "Zinc Sulphate"]

    def test_bad_parameters(self, db_session, owner):
        with pytest.raises(ReportError):
            reporting_service.sales_chart(owner.id, group_by="year")
        with pytest.raises(ReportError):
            reporting_service.dashboard_overview(owner.id, period_days=0)
        with pytest.raises(ReportError):
            reporting_service.top_products(owner.id, sort_by="margin")

    def test_scoped_to_owner(self, db_session, other_owner, shop):
        overview = reporting_service.dashboard_overview(other_owner.id)
        assert overview["customers"]["total"] == 0
        assert overview["revenue"]["total_cents"] == 0
        assert reporting_service.top_products(other_owner.id) == []


class TestAnalyticsReports:
    def test_sales_report_includes_fulfilment_statuses(self, db_session, owner, shop):
        report = reporting_service.sales_report(owner.id)

        assert report["summary"]["total_orders"] == 3
        assert report["summary"]["total_revenue_cents"] == 51600 + 53200
        methods = {row["payment_method"]: row for row in report["payment_breakdown"]}
        assert methods["UPI"]["total_revenue_cents"] == 53200
        assert methods["Cash"]["order_count"] == 2

        upi_only = reporting_service.sales_report(owner.id, payment_method="UPI")
        assert upi_only["summary"]["total_orders"] == 1

    def test_sales_report_range(self, db_session, owner, shop):
        future = (utcnow() + timedelta(days=1)).isoformat() + "Z"
        assert reporting_service.sales_report(owner.id, start=future)["sales_data"] == []
        with pytest.raises(ReportError):
            reporting_service.sales_report(owner.id, start="yesterday")

    def test_product_report_slow_movers(self, db_session, owner, shop):
        seed = db_session.get(Product, shop["seed"].id)
        seed.last_sold_date = utcnow() - timedelta(days=45)
        db_session.commit()

        report = reporting_service.product_report(owner.id)
        assert [p["name"] for p in report["product_performance"]] == ["Urea 45kg", "Hybrid Paddy Seed"]
        assert [p["name"] for p in report["slow_moving_products"]] == ["Hybrid Paddy Seed"]
        assert report["summary"]["total_quantity_sold"] == 8

    def test_customer_report_retention_and_segments(self, db_session, owner, shop):
        report = reporting_service.customer_report(owner.id)

        assert report["customer_retention"] == {"new_customers": 1, "returning_customers": 1, "total_customers": 2}
        assert [c["name"] for c in report["top_customers"]] == ["Sunita Pawar", "Ganesh More"]
        groups = {s["customer_group"]: s for s in report["customer_segmentation"]}
        # Purchase totals include orders that are still pending
        assert groups["vip"]["total_revenue_cents"] == 53200 + 266000

    def test_inventory_report(self, db_session, owner, shop):
        report = reporting_service.inventory_report(owner.id)

        turnover = {row["name"]: row for row in report["stock_turnover"]}
        assert turnover["Hybrid Paddy Seed"]["total_sold"] == 5
        assert turnover["Hybrid Paddy Seed"]["turnover_rate"] == round(5 / 95, 2)
        assert report["summary"]["total_low_stock"] == 1
        seeds = next(c for c in report["category_stock"] if c["category"] == "Seeds")
        assert seeds["total_stock_value_cents"] == 95 * 5000


class TestReportingApi:
    def test_dashboard_routes(self, client, owner_headers, owner, shop):
        overview = client.get('/api/dashboard/overview?period=7', headers=owner_headers)
        assert overview.status_code == 200
        assert overview.json["period_days"] == 7

        chart = client.get('/api/dashboard/sales-chart?group_by=year', headers=owner_headers)
        assert chart.status_code == 400

        top = client.get('/api/dashboard/top-products?limit=1', headers=owner_headers)
        assert len(top.json["products"]) == 1

        alerts = client.get('/api/dashboard/low-stock-alerts', headers=owner_headers)
        assert alerts.json["products"][0]["name"] == "Knapsack Sprayer"

    def test_analytics_routes(self, client, owner_headers, owner, shop):
        assert client.get('/api/analytics/dashboard', headers=owner_headers).status_code == 200
        assert client.get('/api/analytics/inventory', headers=owner_headers).status_code == 200

        sales = client.get('/api/analytics/sales?group_by=month', headers=owner_headers)
        assert sales.status_code == 200
        assert sales.json["summary"]["total_orders"] == 3

        bad = client.get('/api/analytics/customers?sort_by=loyalty', headers=owner_headers)
        assert bad.status_code == 400

    def test_requires_auth(self, client, db_session):
        assert client.get('/api/dashboard/overview').status_code == 401
        assert client.get('/api/analytics/sales', headers=auth_headers('bogus')).status_code == 401
