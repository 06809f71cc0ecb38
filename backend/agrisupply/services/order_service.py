# Overview: Order checkout orchestration; stock, promotions, credit ledger postings and order lifecycle.

"""
Order Service

CHECKOUT (create_order) is one transaction: the order row, its items, stock
decrements, product sales analytics, customer purchase totals and (for
credit orders) the credit_sale ledger entry either all commit or none do.
Every business rule, the credit limit included, is checked before the first
write.

LOCK ORDER: customer, then products / orders, then promotions. Every write
path takes locks in this order.

NUMBERING: order numbers come from the owner's ORDER sequence at creation.
The invoice number is taken from the INVOICE sequence the first time the
order reaches Confirmed (or a later fulfilment status); promotion usage is
recorded at the same moment, exactly once per order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Order, OrderItem, OrderPromotion, Product
from ..models.orders import (
    CANCELLABLE_STATUSES,
    CREDIT_TERMS_DAYS,
    ORDER_PAYMENT_METHODS,
    ORDER_STATUSES,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
)
from ..validation import NotFoundError
from agrisupply.time_utils import days_from_now, utcnow
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .document_service import DOC_INVOICE, DOC_ORDER, next_document_number
from .ledger_service import (
    check_credit_limit,
    default_due_date,
    get_customer_balance,
    post_credit_sale,
    post_payment,
)
from .promotions_service import PromotionLine, record_usage, validate_promotion

logger = logging.getLogger(__name__)

PAYMENT_CREDIT = "Credit"

# Statuses at or past confirmation; reaching any of them issues the invoice
CONFIRMED_STATUSES = (STATUS_CONFIRMED, STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED)
REVENUE_STATUSES = (STATUS_CONFIRMED, STATUS_DELIVERED)

SORTABLE_FIELDS = {
    "created_at": Order.created_at,
    "total_amount_cents": Order.total_amount_cents,
    "order_number": Order.order_number,
}


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def _merge_quantities(items: list[dict]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for item in items:
        totals[item["product_id"]] = totals.get(item["product_id"], 0) + item["quantity"]
    return totals


def _mark_confirmed(order: Order, owner_id: int) -> None:
    """Issue the invoice number and count promotion usage, once per order."""
    if not order.invoice_number:
        order.invoice_number = next_document_number(owner_id=owner_id, document_type=DOC_INVOICE)
    if not order.promotion_usage_recorded:
        for applied in order.applied_promotions:
            record_usage(applied.promotion_id, order.total_amount_cents)
        order.promotion_usage_recorded = True


# =============================================================================
# CHECKOUT
# =============================================================================

def create_order(
    *,
    owner_id: int,
    customer_id: int,
    items: list[dict],
    payment_method: str = "Cash",
    payment_status: str | None = None,
    paid_amount_cents: int | None = None,
    promotion_code: str | None = None,
    discount_amount_cents: int = 0,
    credit_terms: str | None = None,
    delivery_address: dict | None = None,
    delivery_date: datetime | None = None,
    notes: str | None = None,
    order_status: str = STATUS_PENDING,
) -> dict:
    """
    Create an order and apply all of its side effects atomically.

    items: [{"product_id": int, "quantity": int >= 1}, ...]. Unit prices are
    snapshotted from the catalog. Repeated products are checked against
    stock in aggregate.

    Raises:
        OrderError: customer/product not found (404), insufficient stock,
            bad enum values or discount above subtotal (400)
        PromotionError: promotion_code cannot be applied
        LedgerError: credit order would exceed the customer's credit limit
    """
    if not items:
        raise OrderError("At least one item is required")
    if payment_method not in ORDER_PAYMENT_METHODS:
        raise OrderError(f"Invalid payment method: {payment_method}")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise OrderError(f"Invalid payment status: {payment_status}")
    if order_status not in ORDER_STATUSES or order_status == STATUS_CANCELLED:
        raise OrderError(f"Invalid order status: {order_status}")
    if credit_terms is not None and credit_terms not in CREDIT_TERMS_DAYS:
        raise OrderError(
            f"Invalid credit terms: {credit_terms}",
            details={"allowed": list(CREDIT_TERMS_DAYS)},
        )
    if discount_amount_cents < 0:
        raise OrderError("Discount cannot be negative")

    def _op():
        begin_serialized()
        now = utcnow()

        customer = lock_for_update(
            db.session.query(Customer).filter_by(id=customer_id, created_by_user_id=owner_id, is_active=True)
        ).first()
        if not customer:
            raise OrderError("Customer not found or inactive", status_code=404)

        quantities = _merge_quantities(items)
        products = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product).filter(
                    Product.id.in_(quantities.keys()),
                    Product.created_by_user_id == owner_id,
                    Product.is_active.is_(True),
                )
            ).all()
        }

        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None:
                raise OrderError(f"Product {product_id} not found", status_code=404)
            if product.stock_quantity < quantity:
                raise OrderError(
                    f"Insufficient stock for {product.name}. Available: {product.stock_quantity}",
                    details={
                        "product_id": product.id,
                        "requested": quantity,
                        "available": product.stock_quantity,
                    },
                )

        lines = [
            PromotionLine(
                product_id=item["product_id"],
                quantity=item["quantity"],
                unit_price_cents=products[item["product_id"]].price_cents,
                category=products[item["product_id"]].category,
            )
            for item in items
        ]
        subtotal = sum(line.total_price_cents for line in lines)

        evaluation = None
        if promotion_code:
            evaluation = validate_promotion(
                owner_id=owner_id,
                code=promotion_code,
                order_amount_cents=subtotal,
                customer_id=customer.id,
                lines=lines,
                now=now,
            )
        promotion_discount = evaluation.discount_cents if evaluation else 0
        discount = promotion_discount + discount_amount_cents
        if discount > subtotal:
            raise OrderError(
                "Discount cannot exceed order subtotal",
                details={"subtotal_cents": subtotal, "discount_cents": discount},
            )

        tax = 0
        total = subtotal + tax - discount

        if payment_method == PAYMENT_CREDIT and total > 0:
            check_credit_limit(customer, get_customer_balance(customer.id), total)

        address = delivery_address or customer.address
        order = Order(
            created_by_user_id=owner_id,
            customer_id=customer.id,
            order_number=next_document_number(owner_id=owner_id, document_type=DOC_ORDER),
            subtotal_cents=subtotal,
            tax_amount_cents=tax,
            discount_amount_cents=discount,
            promotion_discount_cents=promotion_discount,
            total_amount_cents=total,
            payment_method=payment_method,
            credit_terms=credit_terms,
            order_status=order_status,
            delivery_street=address.get("street"),
            delivery_city=address.get("city"),
            delivery_state=address.get("state"),
            delivery_pincode=address.get("pincode"),
            delivery_landmark=address.get("landmark"),
            delivery_date=delivery_date,
            notes=notes,
            created_at=now,
        )
        for line in lines:
            order.items.append(OrderItem(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                total_price_cents=line.total_price_cents,
            ))
        if evaluation is not None:
            order.applied_promotions.append(OrderPromotion(
                promotion_id=evaluation.promotion.id,
                code=evaluation.promotion.code,
                discount_type=evaluation.promotion.promo_type,
                discount_cents=promotion_discount,
            ))
        db.session.add(order)
        db.session.flush()

        for line in lines:
            product = products[line.product_id]
            product.stock_quantity -= line.quantity
            product.record_sale(line.quantity, line.unit_price_cents, now)

        customer.total_purchases_cents = (customer.total_purchases_cents or 0) + total
        customer.last_purchase_date = now

        if payment_method == PAYMENT_CREDIT:
            order.apply_paid_amount(0)
            order.is_credit_sale = True
            if credit_terms:
                due_date = days_from_now(CREDIT_TERMS_DAYS[credit_terms], now)
            else:
                due_date = default_due_date(customer, now)
            order.credit_due_date = due_date
            if total > 0:
                post_credit_sale(
                    customer, order, owner_id=owner_id, amount_cents=total, due_date=due_date, now=now
                )
        else:
            paid = paid_amount_cents
            if paid is None:
                paid = total if payment_status in (None, PAYMENT_PAID) else 0
            order.apply_paid_amount(paid)
            if payment_status in (PAYMENT_FAILED, PAYMENT_REFUNDED):
                order.payment_status = payment_status

        if order_status in CONFIRMED_STATUSES:
            _mark_confirmed(order, owner_id)

        db.session.commit()
        logger.info(
            "Order %s created for customer %s: total %s, method %s",
            order.order_number, customer.id, total, payment_method,
        )
        return order.to_dict()

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def cancel_order(*, owner_id: int, order_id: int) -> dict:
    """
    Cancel a Pending or Confirmed order and put its stock back.

    Cancelled is terminal. Ledger postings of a credit order are left as
    they are; corrections go through a ledger adjustment.
    """
    def _op():
        begin_serialized()
        order = lock_for_update(
            db.session.query(Order).filter(
                Order.id == order_id,
                Order.created_by_user_id == owner_id,
                Order.order_status.in_(CANCELLABLE_STATUSES),
            )
        ).first()
        if not order:
            raise OrderError("Order not found or cannot be cancelled", status_code=404)

        quantities = _merge_quantities(
            [{"product_id": item.product_id, "quantity": item.quantity} for item in order.items]
        )
        products = lock_for_update(
            db.session.query(Product).filter(Product.id.in_(quantities.keys()))
        ).all()
        for product in products:
            product.stock_quantity += quantities[product.id]

        order.order_status = STATUS_CANCELLED
        db.session.commit()
        logger.info("Order %s cancelled, stock restored for %s products", order.order_number, len(products))
        return order.to_dict()

    return run_with_retry(_op)


def update_status(
    *,
    owner_id: int,
    order_id: int,
    order_status: str,
    payment_status: str | None = None,
) -> dict:
    """
    Move an order to another status.

    Transitions between non-cancelled statuses are unrestricted. Cancelling
    goes through cancel_order() so stock is restored; a cancelled order
    accepts no further changes.
    """
    if order_status not in ORDER_STATUSES:
        raise OrderError("Invalid order status", details={"allowed": list(ORDER_STATUSES)})
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise OrderError("Invalid payment status", details={"allowed": list(PAYMENT_STATUSES)})

    if order_status == STATUS_CANCELLED:
        existing = db.session.query(Order).filter_by(id=order_id, created_by_user_id=owner_id).first()
        if not existing:
            raise OrderError("Order not found", status_code=404)
        if existing.order_status == STATUS_CANCELLED:
            raise OrderError("Order is already cancelled")
        return cancel_order(owner_id=owner_id, order_id=order_id)

    def _op():
        begin_serialized()
        order = lock_for_update(
            db.session.query(Order).filter_by(id=order_id, created_by_user_id=owner_id)
        ).first()
        if not order:
            raise OrderError("Order not found", status_code=404)
        if order.order_status == STATUS_CANCELLED:
            raise OrderError("Cancelled orders cannot be updated")

        order.order_status = order_status
        if payment_status is not None:
            order.payment_status = payment_status
        if order_status in CONFIRMED_STATUSES:
            _mark_confirmed(order, owner_id)

        db.session.commit()
        return order.to_dict()

    return run_with_retry(_op)


def update_payment(
    *,
    owner_id: int,
    order_id: int,
    paid_amount_cents: int,
    payment_method: str | None = None,
    notes: str | None = None,
) -> dict:
    """
    Set the amount paid on an order.

    For credit orders an increase is also posted to the customer ledger as a
    payment of the difference.
    """
    if paid_amount_cents < 0:
        raise OrderError("Paid amount cannot be negative")

    def _op():
        begin_serialized()
        found = db.session.query(Order.customer_id).filter_by(id=order_id, created_by_user_id=owner_id).first()
        if not found:
            raise OrderError("Order not found", status_code=404)
        customer = lock_for_update(db.session.query(Customer).filter_by(id=found.customer_id)).first()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order.order_status == STATUS_CANCELLED:
            raise OrderError("Cannot record payment on a cancelled order")

        previous = order.paid_amount_cents or 0
        order.apply_paid_amount(paid_amount_cents)

        if order.is_credit_sale and paid_amount_cents > previous:
            post_payment(
                customer,
                owner_id=owner_id,
                amount_cents=paid_amount_cents - previous,
                payment_method=payment_method or "Cash",
                description=f"Payment for Order #{order.order_number}",
                notes=notes,
                order_id=order.id,
                allocate=False,
            )

        db.session.commit()
        return order.to_dict()

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_order(owner_id: int, order_id: int) -> dict:
    order = db.session.query(Order).filter_by(id=order_id, created_by_user_id=owner_id).first()
    if not order:
        raise NotFoundError("Order not found")
    return order.to_dict()


def list_orders(
    owner_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    status: str | None = None,
    payment_status: str | None = None,
    customer_id: int | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> dict:
    query = db.session.query(Order).filter(Order.created_by_user_id == owner_id)
    if status:
        query = query.filter(Order.order_status == status)
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)
    if customer_id:
        query = query.filter(Order.customer_id == customer_id)
    if start_date:
        query = query.filter(Order.created_at >= start_date)
    if end_date:
        query = query.filter(Order.created_at <= end_date)
    if search:
        like = f"%{search.strip()}%"
        matching_customers = db.session.query(Customer.id).filter(
            Customer.created_by_user_id == owner_id,
            or_(Customer.name.ilike(like), Customer.phone.ilike(like), Customer.email.ilike(like)),
        )
        query = query.filter(or_(
            Order.order_number.ilike(like),
            Order.invoice_number.ilike(like),
            Order.customer_id.in_(matching_customers),
        ))

    column = SORTABLE_FIELDS.get(sort_by, Order.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()

    total = query.count()
    orders = query.order_by(ordering, Order.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "orders": [o.to_dict() for o in orders],
        "total": total,
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
    }


def get_order_stats(owner_id: int, period_days: int = 30, now: datetime | None = None) -> dict:
    start = (now or utcnow()) - timedelta(days=period_days)
    in_period = (Order.created_by_user_id == owner_id, Order.created_at >= start)

    total_orders = db.session.query(func.count(Order.id)).filter(*in_period).scalar()

    total_revenue = (
        db.session.query(func.coalesce(func.sum(Order.total_amount_cents), 0))
        .filter(*in_period, Order.order_status.in_(REVENUE_STATUSES))
        .scalar()
    )

    by_status = (
        db.session.query(Order.order_status, func.count(Order.id))
        .filter(*in_period)
        .group_by(Order.order_status)
        .all()
    )

    day = func.date(Order.created_at)
    daily = (
        db.session.query(day, func.sum(Order.total_amount_cents), func.count(Order.id))
        .filter(*in_period, Order.order_status.in_(REVENUE_STATUSES))
        .group_by(day)
        .order_by(day)
        .all()
    )

    return {
        "total_orders": total_orders,
        "total_revenue_cents": int(total_revenue or 0),
        "orders_by_status": [{"status": s, "count": c} for s, c in by_status],
        "daily_sales": [
            {"date": str(d), "total_sales_cents": int(total or 0), "order_count": count}
            for d, total, count in daily
        ],
        "period_days": period_days,
    }
