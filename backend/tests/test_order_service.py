# Overview: Pytest coverage for checkout and the order lifecycle.

"""
Order service tests

Checkout must apply all side effects or none: stock, product sales
counters, customer totals, ledger entry and promotion usage.
"""

import pytest

from agrisupply.models import Customer, CustomerLedgerEntry, DocumentSequence, Order, Product, Promotion
from agrisupply.services import order_service
from agrisupply.services.ledger_service import LedgerError
from agrisupply.services.order_service import OrderError
from agrisupply.services.promotions_service import PromotionError


def _items(*pairs):
    return [{"product_id": p.id, "quantity": q} for p, q in pairs]


class TestCreateOrder:
    def test_cash_order_side_effects(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        seed = make_product(owner, name="Cotton Seed", price_cents=75000, stock_quantity=20)
        urea = make_product(owner, name="Urea 45kg", category="Fertilizers", price_cents=26600, stock_quantity=50)

        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((seed, 2), (urea, 3)),
        )

        assert order["order_number"] == "ORD-000001"
        assert order["invoice_number"] is None
        assert order["subtotal_cents"] == 2 * 75000 + 3 * 26600
        assert order["total_amount_cents"] == order["subtotal_cents"]
        assert order["payment_status"] == "Paid"
        assert order["remaining_amount_cents"] == 0
        assert len(order["items"]) == 2

        seed = db_session.get(Product, seed.id)
        assert seed.stock_quantity == 18
        assert seed.total_sold == 2
        assert seed.total_revenue_cents == 150000
        assert seed.last_sold_date is not None

        customer = db_session.get(Customer, customer.id)
        assert customer.total_purchases_cents == order["total_amount_cents"]
        assert customer.last_purchase_date is not None
        # Cash orders never touch the ledger
        assert db_session.query(CustomerLedgerEntry).count() == 0

    def test_order_numbers_are_sequential_per_owner(self, db_session, owner, other_owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner)
        other_customer = make_customer(other_owner)
        other_product = make_product(other_owner)

        first = order_service.create_order(owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)))
        second = order_service.create_order(owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)))
        theirs = order_service.create_order(
            owner_id=other_owner.id, customer_id=other_customer.id, items=_items((other_product, 1)),
        )

        assert [first["order_number"], second["order_number"]] == ["ORD-000001", "ORD-000002"]
        assert theirs["order_number"] == "ORD-000001"

    def test_insufficient_stock_counts_repeated_lines(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, name="Neem Oil", stock_quantity=5)

        with pytest.raises(OrderError) as exc:
            order_service.create_order(
                owner_id=owner.id, customer_id=customer.id, items=_items((product, 3), (product, 3)),
            )

        assert str(exc.value) == "Insufficient stock for Neem Oil. Available: 5"
        assert exc.value.details["requested"] == 6
        assert db_session.get(Product, product.id).stock_quantity == 5
        assert db_session.query(Order).count() == 0

    def test_missing_or_foreign_product(self, db_session, owner, other_owner, make_customer, make_product):
        customer = make_customer(owner)
        foreign = make_product(other_owner)

        with pytest.raises(OrderError) as exc:
            order_service.create_order(owner_id=owner.id, customer_id=customer.id, items=_items((foreign, 1)))
        assert exc.value.status_code == 404
        assert str(exc.value) == f"Product {foreign.id} not found"

    def test_inactive_customer_rejected(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner, is_active=False)
        product = make_product(owner)
        with pytest.raises(OrderError) as exc:
            order_service.create_order(owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)))
        assert exc.value.status_code == 404

    def test_credit_order_posts_ledger_entry(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=12000)

        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 2)),
            payment_method="Credit", credit_terms="30_days",
        )

        assert order["is_credit_sale"] is True
        assert order["paid_amount_cents"] == 0
        assert order["remaining_amount_cents"] == 24000
        assert order["payment_status"] == "Pending"
        assert order["credit_due_date"] is not None

        entry = db_session.query(CustomerLedgerEntry).one()
        assert entry.transaction_type == "credit_sale"
        assert entry.amount_cents == 24000
        assert entry.order_id == order["id"]
        assert entry.description == f"Credit sale - Order #{order['order_number']}"
        assert db_session.get(Customer, customer.id).current_balance_cents == 24000

    def test_partial_payment_status(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=10000)
        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)),
            payment_method="UPI", paid_amount_cents=4000,
        )
        assert order["payment_status"] == "Partially Paid"
        assert order["remaining_amount_cents"] == 6000

    @pytest.mark.parametrize("method", ["Cash", "UPI", "Card", "Cheque"])
    def test_non_credit_methods_default_to_paid_in_full(self, db_session, owner, make_customer, make_product, method):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=12500)
        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 2)), payment_method=method,
        )
        assert order["paid_amount_cents"] == 25000
        assert order["payment_status"] == "Paid"
        assert order["is_credit_sale"] is False

    def test_failed_payment_status_is_kept(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=12500)
        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)),
            payment_method="Card", payment_status="Failed",
        )
        assert order["paid_amount_cents"] == 0
        assert order["payment_status"] == "Failed"

    def test_credit_limit_rejection_leaves_no_trace(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner, credit_limit_cents=10000)
        product = make_product(owner, price_cents=15000, stock_quantity=5)

        with pytest.raises(LedgerError):
            order_service.create_order(
                owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)), payment_method="Credit",
            )

        assert db_session.query(Order).count() == 0
        assert db_session.query(DocumentSequence).count() == 0
        assert db_session.get(Product, product.id).stock_quantity == 5
        assert db_session.get(Customer, customer.id).total_purchases_cents == 0

        # The next checkout still gets the first order number
        cash = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)),
        )
        assert cash["order_number"] == "ORD-000001"

    def test_promotion_applied_server_side(self, db_session, owner, make_customer, make_product, make_promotion):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=50000)
        make_promotion(owner, code="KHARIF10", discount_value=1000, max_discount_amount_cents=3000)

        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)),
            promotion_code="kharif10", discount_amount_cents=500,
        )

        assert order["promotion_discount_cents"] == 3000
        assert order["discount_amount_cents"] == 3500
        assert order["total_amount_cents"] == 46500
        assert order["applied_promotions"][0]["code"] == "KHARIF10"

    def test_invalid_promotion_aborts_checkout(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, stock_quantity=10)
        with pytest.raises(PromotionError):
            order_service.create_order(
                owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)), promotion_code="BOGUS",
            )
        assert db_session.get(Product, product.id).stock_quantity == 10

    def test_discount_above_subtotal_rejected(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=1000)
        with pytest.raises(OrderError, match="Discount cannot exceed order subtotal"):
            order_service.create_order(
                owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)), discount_amount_cents=1001,
            )

    def test_created_confirmed_gets_invoice(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner)
        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)), order_status="Confirmed",
        )
        assert order["invoice_number"] == "INV-000001"


class TestLifecycle:
    def test_cancel_restores_stock(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, stock_quantity=40)

        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 7), (product, 3)),
        )
        assert db_session.get(Product, product.id).stock_quantity == 30

        cancelled = order_service.cancel_order(owner_id=owner.id, order_id=order["id"])
        assert cancelled["order_status"] == "Cancelled"
        assert db_session.get(Product, product.id).stock_quantity == 40

    def test_cancel_only_from_pending_or_confirmed(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner)
        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)), order_status="Shipped",
        )
        with pytest.raises(OrderError) as exc:
            order_service.cancel_order(owner_id=owner.id, order_id=order["id"])
        assert exc.value.status_code == 404
        assert str(exc.value) == "Order not found or cannot be cancelled"

    def test_confirmation_issues_invoice_and_counts_promotion_once(
        self, db_session, owner, make_customer, make_product, make_promotion
    ):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=10000)
        promotion = make_promotion(owner)
        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)), promotion_code="KHARIF10",
        )
        assert db_session.get(Promotion, promotion.id).usage_count == 0

        confirmed = order_service.update_status(owner_id=owner.id, order_id=order["id"], order_status="Confirmed")
        assert confirmed["invoice_number"] == "INV-000001"

        shipped = order_service.update_status(owner_id=owner.id, order_id=order["id"], order_status="Shipped")
        assert shipped["invoice_number"] == "INV-000001"

        promotion = db_session.get(Promotion, promotion.id)
        assert promotion.usage_count == 1
        assert promotion.total_orders == 1
        assert promotion.total_revenue_cents == 9000

    def test_cancelled_is_terminal(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner)
        order = order_service.create_order(owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)))

        order_service.update_status(owner_id=owner.id, order_id=order["id"], order_status="Cancelled")

        with pytest.raises(OrderError, match="Cancelled orders cannot be updated"):
            order_service.update_status(owner_id=owner.id, order_id=order["id"], order_status="Confirmed")
        with pytest.raises(OrderError, match="already cancelled"):
            order_service.update_status(owner_id=owner.id, order_id=order["id"], order_status="Cancelled")

    def test_invalid_status(self, db_session, owner):
        with pytest.raises(OrderError):
            order_service.update_status(owner_id=owner.id, order_id=1, order_status="Lost")

    def test_credit_payment_update_posts_delta(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=10000)
        order = order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)), payment_method="Credit",
        )

        updated = order_service.update_payment(owner_id=owner.id, order_id=order["id"], paid_amount_cents=4000)
        assert updated["payment_status"] == "Partially Paid"
        updated = order_service.update_payment(
            owner_id=owner.id, order_id=order["id"], paid_amount_cents=10000, payment_method="UPI",
        )
        assert updated["payment_status"] == "Paid"

        payments = (
            db_session.query(CustomerLedgerEntry)
            .filter_by(transaction_type="payment")
            .order_by(CustomerLedgerEntry.id)
            .all()
        )
        assert [p.amount_cents for p in payments] == [-4000, -6000]
        assert payments[1].payment_method == "UPI"
        assert db_session.get(Customer, customer.id).current_balance_cents == 0


class TestReads:
    def test_list_search_and_filters(self, db_session, owner, make_customer, make_product):
        anita = make_customer(owner, name="Anita Deshmukh", phone="9000000001")
        vijay = make_customer(owner, name="Vijay Shinde", phone="9000000002")
        product = make_product(owner)
        order_service.create_order(owner_id=owner.id, customer_id=anita.id, items=_items((product, 1)))
        order_service.create_order(
            owner_id=owner.id, customer_id=vijay.id, items=_items((product, 1)), order_status="Confirmed",
        )

        assert order_service.list_orders(owner.id)["total"] == 2
        assert order_service.list_orders(owner.id, search="anita")["orders"][0]["customer"]["name"] == "Anita Deshmukh"
        assert order_service.list_orders(owner.id, status="Confirmed")["total"] == 1
        assert order_service.list_orders(owner.id, search="INV-000001")["total"] == 1

    def test_stats_count_revenue_of_confirmed_and_delivered(self, db_session, owner, make_customer, make_product):
        customer = make_customer(owner)
        product = make_product(owner, price_cents=1000)
        order_service.create_order(owner_id=owner.id, customer_id=customer.id, items=_items((product, 1)))
        order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 2)), order_status="Confirmed",
        )
        order_service.create_order(
            owner_id=owner.id, customer_id=customer.id, items=_items((product, 4)), order_status="Delivered",
        )

        stats = order_service.get_order_stats(owner.id)
        assert stats["total_orders"] == 3
        assert stats["total_revenue_cents"] == 6000
        by_status = {row["status"]: row["count"] for row in stats["orders_by_status"]}
        assert by_status == {"Pending": 1, "Confirmed": 1, "Delivered": 1}
        assert sum(day["order_count"] for day in stats["daily_sales"]) == 2
