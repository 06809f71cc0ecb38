from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Order
from ..models.orders import STATUS_CONFIRMED, STATUS_DELIVERED
from ..validation import NotFoundError
from agrisupply.time_utils import start_of_month

ADDRESS_FIELDS = ("street", "city", "state", "pincode", "landmark")

RECENT_ORDERS_LIMIT = 20


def flatten_address(payload: dict) -> dict:
    """Move a nested {"address": {...}} into the flat street/city/... keys."""
    if not isinstance(payload, dict) or "address" not in payload:
        return payload
    data = dict(payload)
    address = data.pop("address") or {}
    if isinstance(address, dict):
        for key in ADDRESS_FIELDS:
            if key in address:
                data[key] = address[key]
    else:
        data["address"] = address
    return data


def _get_owned(owner_id: int, customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id, created_by_user_id=owner_id).first()
    if not customer:
        raise NotFoundError("Customer not found")
    return customer


def list_customers(
    owner_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    business_type: str | None = None,
    customer_group: str | None = None,
    is_active: bool | None = True,
) -> dict:
    query = db.session.query(Customer).filter(Customer.created_by_user_id == owner_id)
    if is_active is not None:
        query = query.filter(Customer.is_active.is_(is_active))
    if business_type:
        query = query.filter(Customer.business_type == business_type)
    if customer_group:
        query = query.filter(Customer.customer_group == customer_group)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(like),
            Customer.phone.ilike(like),
            Customer.email.ilike(like),
        ))

    total = query.count()
    customers = (
        query.order_by(Customer.created_at.desc(), Customer.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "customers": [c.to_dict() for c in customers],
        "total": total,
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
    }


def get_customer(owner_id: int, customer_id: int) -> dict:
    """Customer with their most recent orders."""
    customer = _get_owned(owner_id, customer_id)
    orders = (
        db.session.query(Order)
        .filter_by(customer_id=customer.id, created_by_user_id=owner_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(RECENT_ORDERS_LIMIT)
        .all()
    )
    return {"customer": customer.to_dict(), "orders": [o.to_dict() for o in orders]}


def create_customer(*, owner_id: int, patch: dict) -> dict:
    if patch.get("email"):
        patch = dict(patch, email=patch["email"].lower())
    customer = Customer(created_by_user_id=owner_id, **patch)
    db.session.add(customer)
    db.session.commit()
    return customer.to_dict()


def update_customer(*, owner_id: int, customer_id: int, patch: dict) -> dict:
    customer = _get_owned(owner_id, customer_id)
    if patch.get("email"):
        patch = dict(patch, email=patch["email"].lower())
    for key, value in patch.items():
        setattr(customer, key, value)
    db.session.commit()
    return customer.to_dict()


def deactivate_customer(*, owner_id: int, customer_id: int) -> dict:
    customer = _get_owned(owner_id, customer_id)
    customer.is_active = False
    db.session.commit()
    return customer.to_dict()


def get_customer_stats(owner_id: int) -> dict:
    active = (Customer.created_by_user_id == owner_id, Customer.is_active.is_(True))

    total = db.session.query(func.count(Customer.id)).filter(*active).scalar()
    new_this_month = (
        db.session.query(func.count(Customer.id))
        .filter(*active, Customer.created_at >= start_of_month())
        .scalar()
    )

    spent = func.sum(Order.total_amount_cents)
    top = (
        db.session.query(Customer.id, Customer.name, Customer.phone, spent, func.count(Order.id))
        .join(Order, Order.customer_id == Customer.id)
        .filter(
            Order.created_by_user_id == owner_id,
            Order.order_status.in_((STATUS_CONFIRMED, STATUS_DELIVERED)),
        )
        .group_by(Customer.id, Customer.name, Customer.phone)
        .order_by(spent.desc())
        .limit(5)
        .all()
    )

    return {
        "total_customers": total,
        "new_customers_this_month": new_this_month,
        "top_customers": [
            {
                "customer_id": cid,
                "customer_name": name,
                "customer_phone": phone,
                "total_spent_cents": int(total_spent or 0),
                "order_count": count,
            }
            for cid, name, phone, total_spent, count in top
        ],
    }
