from __future__ import annotations

from ..extensions import db
from agrisupply.time_utils import to_utc_z, utcnow


BUSINESS_TYPES = ("Farmer", "Retailer", "Wholesaler", "Cooperative", "Other")
CUSTOMER_GROUPS = ("new", "regular", "vip", "wholesale")
CROP_TYPES = ("Rice", "Wheat", "Cotton", "Sugarcane", "Vegetables", "Fruits", "Spices", "Other")

TX_CREDIT_SALE = "credit_sale"
TX_PAYMENT = "payment"
TX_ADJUSTMENT = "adjustment"
TX_INTEREST = "interest"
TX_PENALTY = "penalty"
TRANSACTION_TYPES = (TX_CREDIT_SALE, TX_PAYMENT, TX_ADJUSTMENT, TX_INTEREST, TX_PENALTY)

LEDGER_PAYMENT_METHODS = ("Cash", "UPI", "Card", "Cheque", "Bank Transfer", "Adjustment")


class Customer(db.Model):
    """
    Customer master data with cached purchase and credit aggregates.

    TENANCY: Customers are scoped to the owning user via created_by_user_id.

    current_balance_cents is a projection of the ledger: it always equals the
    balance_cents of the customer's most recent CustomerLedgerEntry. It is only
    written by ledger_service, in the same transaction as the entry.

    version_id doubles as the serialization point for ledger writes: two
    concurrent postings for one customer cannot both commit.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_owner_active", "created_by_user_id", "is_active"),
        db.Index("ix_customers_owner_phone", "created_by_user_id", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=False)
    alternate_phone = db.Column(db.String(32), nullable=True)

    # Address
    street = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(128), nullable=True)
    pincode = db.Column(db.String(16), nullable=True)
    landmark = db.Column(db.String(255), nullable=True)

    business_type = db.Column(db.String(32), nullable=False, default="Farmer")
    crop_types = db.Column(db.JSON, nullable=False, default=list)
    customer_group = db.Column(db.String(16), nullable=False, default="new", index=True)

    # Credit terms (0 limit = no limit enforced)
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_terms_days = db.Column(db.Integer, nullable=False, default=0)

    # Denormalized aggregates
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def address(self) -> dict:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "landmark": self.landmark,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "alternate_phone": self.alternate_phone,
            "address": self.address,
            "business_type": self.business_type,
            "crop_types": list(self.crop_types or []),
            "customer_group": self.customer_group,
            "credit_limit_cents": self.credit_limit_cents,
            "payment_terms_days": self.payment_terms_days,
            "current_balance_cents": self.current_balance_cents,
            "total_purchases_cents": self.total_purchases_cents,
            "last_purchase_date": to_utc_z(self.last_purchase_date),
            "notes": self.notes,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerLedgerEntry(db.Model):
    """
    Append-only customer credit ledger.

    SIGN CONVENTION:
    - amount_cents > 0: customer owes more (credit_sale, interest, penalty)
    - amount_cents < 0: payment reduces debt
    - adjustment: either sign

    balance_cents is the running balance AFTER this entry. Entries are never
    updated or deleted; corrections are new adjustment entries.

    is_overdue is a snapshot taken when the entry is written (credit sales
    with a due date and no paid date). It is not re-evaluated later.
    """
    __tablename__ = "customer_ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_customer_created", "customer_id", "created_at"),
        db.Index("ix_ledger_customer_type", "customer_id", "transaction_type"),
        db.Index("ix_ledger_due_overdue", "due_date", "is_overdue"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_cents = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(500), nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)  # required iff transaction_type=payment
    payment_reference = db.Column(db.String(100), nullable=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)
    is_overdue = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy="dynamic"))
    order = db.relationship("Order", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_cents": self.balance_cents,
            "description": self.description,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "due_date": to_utc_z(self.due_date),
            "paid_date": to_utc_z(self.paid_date),
            "is_overdue": self.is_overdue,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
