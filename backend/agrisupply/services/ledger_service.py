# Overview: Customer credit ledger; running balances, payments with FIFO allocation, credit sales and charges.

"""
Customer Ledger Service

The ledger is append-only. Every posting creates one CustomerLedgerEntry whose
balance_cents is the customer's running balance after the posting, and copies
that balance onto Customer.current_balance_cents in the same transaction.

SERIALIZATION: every write for a customer runs inside run_with_retry with the
customer row locked (SELECT ... FOR UPDATE, BEGIN IMMEDIATE on SQLite). The
customer's version_id is bumped by each posting, so two writers that read the
same balance cannot both commit; the loser is retried and re-reads.

Functions prefixed with post_ run inside the caller's transaction (used by
order checkout). The record_ functions own their transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, CustomerLedgerEntry, Order
from ..models.customers import (
    LEDGER_PAYMENT_METHODS,
    TX_ADJUSTMENT,
    TX_CREDIT_SALE,
    TX_INTEREST,
    TX_PAYMENT,
    TX_PENALTY,
)
from ..models.orders import PAYMENT_PARTIAL, PAYMENT_PENDING, STATUS_CANCELLED
from agrisupply.time_utils import days_from_now, to_utc_z, utcnow
from .concurrency import begin_serialized, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

CHARGE_TYPES = (TX_INTEREST, TX_PENALTY)


class LedgerError(Exception):
    """Raised for ledger operation errors."""
    def __init__(self, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def format_rupees(cents: int) -> str:
    return f"₹{cents / 100:.2f}"


# =============================================================================
# READS
# =============================================================================

def get_customer_balance(customer_id: int) -> int:
    """
    Balance of the customer's most recent ledger entry, 0 when there is none.

    Ordered by (created_at, id) so entries written within the same clock tick
    still resolve to the last insert.
    """
    balance = (
        db.session.query(CustomerLedgerEntry.balance_cents)
        .filter(CustomerLedgerEntry.customer_id == customer_id)
        .order_by(CustomerLedgerEntry.created_at.desc(), CustomerLedgerEntry.id.desc())
        .limit(1)
        .scalar()
    )
    return balance or 0


def _get_owned_customer(owner_id: int, customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id, created_by_user_id=owner_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if not customer:
        raise LedgerError("Customer not found", status_code=404)
    return customer


def list_customer_ledger(*, owner_id: int, customer_id: int, page: int = 1, limit: int = 20) -> dict:
    """Newest-first page of a customer's ledger plus a customer header."""
    customer = _get_owned_customer(owner_id, customer_id)

    query = db.session.query(CustomerLedgerEntry).filter_by(
        customer_id=customer.id, created_by_user_id=owner_id
    )
    total = query.count()
    entries = (
        query.order_by(CustomerLedgerEntry.created_at.desc(), CustomerLedgerEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "customer": {
            "id": customer.id,
            "name": customer.name,
            "phone": customer.phone,
            "credit_limit_cents": customer.credit_limit_cents,
            "current_balance_cents": get_customer_balance(customer.id),
        },
        "ledger_entries": [e.to_dict() for e in entries],
        "total": total,
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
    }


def _overdue_query(owner_id: int):
    return db.session.query(CustomerLedgerEntry).filter(
        CustomerLedgerEntry.created_by_user_id == owner_id,
        CustomerLedgerEntry.transaction_type == TX_CREDIT_SALE,
        CustomerLedgerEntry.is_overdue.is_(True),
        CustomerLedgerEntry.balance_cents > 0,
    )


def get_overdue_customers(owner_id: int) -> list[dict]:
    """
    Customers with overdue credit sales, oldest due date first.

    total_overdue_cents is the gross sum of the overdue credit sale amounts;
    payments made since are not netted off.
    """
    rows = (
        _overdue_query(owner_id)
        .join(Customer, Customer.id == CustomerLedgerEntry.customer_id)
        .with_entities(
            Customer.id,
            Customer.name,
            Customer.phone,
            func.sum(CustomerLedgerEntry.amount_cents),
            func.min(CustomerLedgerEntry.due_date),
            func.count(CustomerLedgerEntry.id),
        )
        .group_by(Customer.id, Customer.name, Customer.phone)
        .order_by(func.min(CustomerLedgerEntry.due_date).asc())
        .all()
    )
    return [
        {
            "customer_id": cid,
            "customer_name": name,
            "customer_phone": phone,
            "total_overdue_cents": int(total or 0),
            "oldest_due_date": to_utc_z(oldest),
            "transaction_count": count,
        }
        for cid, name, phone, total, oldest, count in rows
    ]


def get_ledger_summary(owner_id: int, period_days: int = 30, now: datetime | None = None) -> dict:
    now = now or utcnow()
    start = now - timedelta(days=period_days)

    receivables = (
        db.session.query(func.coalesce(func.sum(Customer.current_balance_cents), 0))
        .filter(Customer.created_by_user_id == owner_id, Customer.current_balance_cents > 0)
        .scalar()
    )

    def _period_totals(transaction_type: str):
        return (
            db.session.query(
                func.coalesce(func.sum(func.abs(CustomerLedgerEntry.amount_cents)), 0),
                func.count(CustomerLedgerEntry.id),
            )
            .filter(
                CustomerLedgerEntry.created_by_user_id == owner_id,
                CustomerLedgerEntry.transaction_type == transaction_type,
                CustomerLedgerEntry.created_at >= start,
            )
            .one()
        )

    payments_total, payments_count = _period_totals(TX_PAYMENT)
    credit_total, credit_count = _period_totals(TX_CREDIT_SALE)

    overdue_total = (
        _overdue_query(owner_id)
        .with_entities(func.coalesce(func.sum(CustomerLedgerEntry.amount_cents), 0))
        .scalar()
    )

    return {
        "total_receivables_cents": int(receivables or 0),
        "payments_received": {"total_cents": int(payments_total), "count": payments_count},
        "credit_sales": {"total_cents": int(credit_total), "count": credit_count},
        "total_overdue_cents": int(overdue_total or 0),
        "period_days": period_days,
    }


# =============================================================================
# POSTING (caller's transaction)
# =============================================================================

def _append_entry(
    customer: Customer,
    *,
    owner_id: int,
    transaction_type: str,
    amount_cents: int,
    balance_cents: int,
    description: str,
    order_id: int | None = None,
    payment_method: str | None = None,
    payment_reference: str | None = None,
    due_date: datetime | None = None,
    paid_date: datetime | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> CustomerLedgerEntry:
    now = now or utcnow()

    is_overdue = False
    if transaction_type == TX_CREDIT_SALE and due_date is not None and paid_date is None:
        is_overdue = now > due_date

    entry = CustomerLedgerEntry(
        created_by_user_id=owner_id,
        customer_id=customer.id,
        order_id=order_id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_cents=balance_cents,
        description=description,
        payment_method=payment_method,
        payment_reference=payment_reference,
        due_date=due_date,
        paid_date=paid_date,
        is_overdue=is_overdue,
        notes=notes,
        created_at=now,
    )
    db.session.add(entry)

    # Always dirty the customer row so its version_id moves with every posting
    customer.current_balance_cents = balance_cents
    customer.updated_at = now
    db.session.flush()
    return entry


def check_credit_limit(customer: Customer, current_cents: int, amount_cents: int) -> None:
    new_balance = current_cents + amount_cents
    if customer.credit_limit_cents > 0 and new_balance > customer.credit_limit_cents:
        logger.info(
            "Credit limit rejection for customer %s: balance %s + %s > %s",
            customer.id, current_cents, amount_cents, customer.credit_limit_cents,
        )
        raise LedgerError(
            f"Credit limit exceeded. Current balance: {format_rupees(current_cents)}, "
            f"Credit limit: {format_rupees(customer.credit_limit_cents)}",
            details={
                "current_balance_cents": current_cents,
                "credit_limit_cents": customer.credit_limit_cents,
                "requested_cents": amount_cents,
            },
        )


def default_due_date(customer: Customer, now: datetime | None = None) -> datetime | None:
    if customer.payment_terms_days and customer.payment_terms_days > 0:
        return days_from_now(customer.payment_terms_days, now)
    return None


def post_credit_sale(
    customer: Customer,
    order: Order,
    *,
    owner_id: int,
    amount_cents: int,
    due_date: datetime | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> CustomerLedgerEntry:
    """
    Append a credit_sale entry for an order. The customer row must already be
    locked by the caller.

    Raises:
        LedgerError: amount not positive or credit limit exceeded
    """
    if amount_cents <= 0:
        raise LedgerError("Amount must be greater than 0")

    now = now or utcnow()
    current = get_customer_balance(customer.id)
    check_credit_limit(customer, current, amount_cents)

    if due_date is None:
        due_date = default_due_date(customer, now)

    entry = _append_entry(
        customer,
        owner_id=owner_id,
        transaction_type=TX_CREDIT_SALE,
        amount_cents=amount_cents,
        balance_cents=current + amount_cents,
        description=f"Credit sale - Order #{order.order_number}",
        order_id=order.id,
        due_date=due_date,
        notes=notes,
        now=now,
    )

    order.is_credit_sale = True
    order.payment_status = PAYMENT_PENDING
    order.credit_due_date = due_date
    return entry


def _allocate_payment(customer: Customer, owner_id: int, amount_cents: int, order_id: int | None) -> list[dict]:
    """Apply a payment to one order, or FIFO across the customer's open orders."""
    if order_id is not None:
        order = lock_for_update(
            db.session.query(Order).filter_by(
                id=order_id, customer_id=customer.id, created_by_user_id=owner_id
            )
        ).first()
        if not order:
            raise LedgerError("Order not found", status_code=404)
        paid = order.paid_amount_cents or 0
        applied = max(0, min(amount_cents, order.total_amount_cents - paid))
        order.apply_paid_amount(paid + applied)
        return [{
            "order_id": order.id,
            "order_number": order.order_number,
            "applied_cents": applied,
            "payment_status": order.payment_status,
        }]

    open_orders = lock_for_update(
        db.session.query(Order).filter(
            Order.customer_id == customer.id,
            Order.created_by_user_id == owner_id,
            Order.payment_status.in_((PAYMENT_PENDING, PAYMENT_PARTIAL)),
            Order.remaining_amount_cents > 0,
            Order.order_status != STATUS_CANCELLED,
        )
    ).order_by(Order.created_at.asc(), Order.id.asc()).all()

    allocations = []
    remaining = amount_cents
    for order in open_orders:
        if remaining <= 0:
            break
        applied = min(remaining, order.remaining_amount_cents)
        order.apply_paid_amount((order.paid_amount_cents or 0) + applied)
        allocations.append({
            "order_id": order.id,
            "order_number": order.order_number,
            "applied_cents": applied,
            "payment_status": order.payment_status,
        })
        remaining -= applied
    return allocations


def post_payment(
    customer: Customer,
    *,
    owner_id: int,
    amount_cents: int,
    payment_method: str,
    description: str,
    payment_reference: str | None = None,
    notes: str | None = None,
    order_id: int | None = None,
    allocate: bool = True,
    now: datetime | None = None,
) -> tuple[CustomerLedgerEntry, list[dict]]:
    """
    Append a payment entry; the balance never goes below zero.

    allocate=False records the ledger side only (the caller has already
    updated the order's paid amount).
    """
    if amount_cents <= 0:
        raise LedgerError("Amount must be greater than 0")
    if payment_method not in LEDGER_PAYMENT_METHODS:
        raise LedgerError(
            f"Invalid payment method: {payment_method}",
            details={"allowed": list(LEDGER_PAYMENT_METHODS)},
        )

    now = now or utcnow()
    current = get_customer_balance(customer.id)
    new_balance = max(0, current - amount_cents)

    allocations = []
    if allocate:
        allocations = _allocate_payment(customer, owner_id, amount_cents, order_id)

    entry = _append_entry(
        customer,
        owner_id=owner_id,
        transaction_type=TX_PAYMENT,
        amount_cents=-amount_cents,
        balance_cents=new_balance,
        description=description,
        order_id=order_id,
        payment_method=payment_method,
        payment_reference=payment_reference,
        paid_date=now,
        notes=notes,
        now=now,
    )
    return entry, allocations


# =============================================================================
# RECORDING (own transaction)
# =============================================================================

def record_payment(
    *,
    owner_id: int,
    customer_id: int,
    amount_cents: int,
    payment_method: str,
    description: str,
    payment_reference: str | None = None,
    notes: str | None = None,
    order_id: int | None = None,
) -> dict:
    """
    Record a payment against a customer account and settle open orders.

    With order_id the whole payment goes to that order. Without it the
    payment is spread over open orders oldest first; any leftover is absorbed
    by the ledger balance.

    Returns:
        {"ledger_entry", "new_balance_cents", "allocations"}
    """
    def _op():
        begin_serialized()
        customer = _get_owned_customer(owner_id, customer_id, lock=True)
        entry, allocations = post_payment(
            customer,
            owner_id=owner_id,
            amount_cents=amount_cents,
            payment_method=payment_method,
            payment_reference=payment_reference,
            description=description,
            notes=notes,
            order_id=order_id,
        )
        db.session.commit()
        logger.info(
            "Payment of %s recorded for customer %s (%s orders settled)",
            amount_cents, customer.id, len(allocations),
        )
        return {
            "ledger_entry": entry.to_dict(),
            "new_balance_cents": entry.balance_cents,
            "allocations": allocations,
        }

    return run_with_retry(_op)


def record_credit_sale(
    *,
    owner_id: int,
    customer_id: int,
    order_id: int,
    amount_cents: int,
    due_date: datetime | None = None,
    notes: str | None = None,
) -> dict:
    def _op():
        begin_serialized()
        customer = _get_owned_customer(owner_id, customer_id, lock=True)
        order = db.session.query(Order).filter_by(
            id=order_id, customer_id=customer.id, created_by_user_id=owner_id
        ).first()
        if not order:
            raise LedgerError("Order not found", status_code=404)
        entry = post_credit_sale(
            customer, order, owner_id=owner_id, amount_cents=amount_cents, due_date=due_date, notes=notes
        )
        db.session.commit()
        logger.info("Credit sale of %s recorded for customer %s", amount_cents, customer.id)
        return {"ledger_entry": entry.to_dict(), "new_balance_cents": entry.balance_cents}

    return run_with_retry(_op)


def record_adjustment(
    *,
    owner_id: int,
    entry_id: int,
    amount_cents: int,
    description: str,
    notes: str | None = None,
) -> dict:
    """
    Correct a customer's balance with a new adjustment entry.

    The referenced entry is left untouched; it only identifies the customer.
    Adjustments may take the balance below zero.
    """
    if amount_cents == 0:
        raise LedgerError("Adjustment amount cannot be zero")

    def _op():
        begin_serialized()
        original = db.session.query(CustomerLedgerEntry).filter_by(
            id=entry_id, created_by_user_id=owner_id
        ).first()
        if not original:
            raise LedgerError("Ledger entry not found", status_code=404)
        customer = _get_owned_customer(owner_id, original.customer_id, lock=True)
        current = get_customer_balance(customer.id)
        entry = _append_entry(
            customer,
            owner_id=owner_id,
            transaction_type=TX_ADJUSTMENT,
            amount_cents=amount_cents,
            balance_cents=current + amount_cents,
            description=description,
            notes=notes,
        )
        db.session.commit()
        return {"ledger_entry": entry.to_dict(), "new_balance_cents": entry.balance_cents}

    return run_with_retry(_op)


def record_charge(
    *,
    owner_id: int,
    customer_id: int,
    transaction_type: str,
    amount_cents: int,
    description: str,
    due_date: datetime | None = None,
    notes: str | None = None,
) -> dict:
    """Post interest or a penalty onto the customer's balance."""
    if transaction_type not in CHARGE_TYPES:
        raise LedgerError(
            f"Invalid charge type: {transaction_type}",
            details={"allowed": list(CHARGE_TYPES)},
        )
    if amount_cents <= 0:
        raise LedgerError("Amount must be greater than 0")

    def _op():
        begin_serialized()
        customer = _get_owned_customer(owner_id, customer_id, lock=True)
        current = get_customer_balance(customer.id)
        entry = _append_entry(
            customer,
            owner_id=owner_id,
            transaction_type=transaction_type,
            amount_cents=amount_cents,
            balance_cents=current + amount_cents,
            description=description,
            due_date=due_date,
            notes=notes,
        )
        db.session.commit()
        return {"ledger_entry": entry.to_dict(), "new_balance_cents": entry.balance_cents}

    return run_with_retry(_op)
