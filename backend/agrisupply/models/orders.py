from __future__ import annotations

from ..extensions import db
from agrisupply.time_utils import to_utc_z, utcnow


ORDER_PAYMENT_METHODS = ("Cash", "UPI", "Card", "Cheque", "Credit")

PAYMENT_PENDING = "Pending"
PAYMENT_PAID = "Paid"
PAYMENT_PARTIAL = "Partially Paid"
PAYMENT_FAILED = "Failed"
PAYMENT_REFUNDED = "Refunded"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_PARTIAL, PAYMENT_FAILED, PAYMENT_REFUNDED)

STATUS_PENDING = "Pending"
STATUS_CONFIRMED = "Confirmed"
STATUS_PROCESSING = "Processing"
STATUS_SHIPPED = "Shipped"
STATUS_DELIVERED = "Delivered"
STATUS_CANCELLED = "Cancelled"
ORDER_STATUSES = (
    STATUS_PENDING, STATUS_CONFIRMED, STATUS_PROCESSING,
    STATUS_SHIPPED, STATUS_DELIVERED, STATUS_CANCELLED,
)
CANCELLABLE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)

# Days until a credit sale falls due, per credit term
CREDIT_TERMS_DAYS = {
    "immediate": 0,
    "7_days": 7,
    "15_days": 15,
    "30_days": 30,
    "45_days": 45,
    "60_days": 60,
    "90_days": 90,
}


class Order(db.Model):
    """
    Customer order (checkout document).

    NUMBERING: order_number ("ORD-000001") is allocated from the owner's
    ORDER document sequence at creation. invoice_number ("INV-000001") is
    allocated from the INVOICE sequence the first time the order is Confirmed.

    MONEY INVARIANTS (all paise):
    - total_amount_cents = subtotal_cents + tax_amount_cents - discount_amount_cents
    - remaining_amount_cents = max(0, total_amount_cents - paid_amount_cents)
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("created_by_user_id", "order_number", name="uq_orders_owner_number"),
        db.UniqueConstraint("created_by_user_id", "invoice_number", name="uq_orders_owner_invoice"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        db.Index("ix_orders_owner_status", "created_by_user_id", "order_status"),
        db.Index("ix_orders_payment_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    order_number = db.Column(db.String(32), nullable=False)
    invoice_number = db.Column(db.String(32), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    promotion_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="Cash")
    is_credit_sale = db.Column(db.Boolean, nullable=False, default=False)
    credit_terms = db.Column(db.String(16), nullable=True)
    credit_due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING)
    order_status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)

    # Delivery address (defaults to the customer's address)
    delivery_street = db.Column(db.String(255), nullable=True)
    delivery_city = db.Column(db.String(128), nullable=True)
    delivery_state = db.Column(db.String(128), nullable=True)
    delivery_pincode = db.Column(db.String(16), nullable=True)
    delivery_landmark = db.Column(db.String(255), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=True)

    # Set once promotion usage counters were bumped for this order
    promotion_usage_recorded = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy="dynamic"))
    items = db.relationship(
        "OrderItem", backref="order", lazy=True, cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    applied_promotions = db.relationship(
        "OrderPromotion", backref="order", lazy=True, cascade="all, delete-orphan"
    )
    __mapper_args__ = {"version_id_col": version_id}

    def apply_paid_amount(self, paid_cents: int) -> None:
        """Set paid amount and derive remaining amount and payment status."""
        self.paid_amount_cents = paid_cents
        self.remaining_amount_cents = max(0, self.total_amount_cents - paid_cents)
        if paid_cents >= self.total_amount_cents:
            self.payment_status = PAYMENT_PAID
        elif paid_cents > 0:
            self.payment_status = PAYMENT_PARTIAL
        else:
            self.payment_status = PAYMENT_PENDING

    @property
    def delivery_address(self) -> dict:
        return {
            "street": self.delivery_street,
            "city": self.delivery_city,
            "state": self.delivery_state,
            "pincode": self.delivery_pincode,
            "landmark": self.delivery_landmark,
        }

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer": {
                "id": self.customer.id,
                "name": self.customer.name,
                "phone": self.customer.phone,
                "email": self.customer.email,
            } if self.customer else None,
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "promotion_discount_cents": self.promotion_discount_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "is_credit_sale": self.is_credit_sale,
            "credit_terms": self.credit_terms,
            "credit_due_date": to_utc_z(self.credit_due_date),
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "payment_status": self.payment_status,
            "order_status": self.order_status,
            "delivery_address": self.delivery_address,
            "delivery_date": to_utc_z(self.delivery_date),
            "notes": self.notes,
            "applied_promotions": [p.to_dict() for p in self.applied_promotions],
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Order line with the unit price snapshotted at checkout."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {
                "id": self.product.id,
                "name": self.product.name,
                "brand": self.product.brand,
                "category": self.product.category,
                "pack_size": {"value": self.product.pack_size_value, "unit": self.product.pack_size_unit},
            } if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


class OrderPromotion(db.Model):
    """Promotion applied to an order, with the code and discount snapshotted."""
    __tablename__ = "order_promotions"
    __table_args__ = (
        db.Index("ix_order_promotions_promo_code", "code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)

    code = db.Column(db.String(20), nullable=False)
    discount_type = db.Column(db.String(32), nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    promotion = db.relationship("Promotion")

    def to_dict(self) -> dict:
        return {
            "promotion_id": self.promotion_id,
            "code": self.code,
            "discount_type": self.discount_type,
            "discount_cents": self.discount_cents,
        }
