from __future__ import annotations

from ..extensions import db
from agrisupply.time_utils import to_utc_z, utcnow


PRODUCT_CATEGORIES = ("Seeds", "Fertilizers", "Pesticides", "Tools", "Equipment", "Irrigation", "Other")
PACK_SIZE_UNITS = ("kg", "g", "L", "ml", "pieces", "packets", "bags", "bottles")
PRODUCT_CROP_TYPES = ("Rice", "Wheat", "Cotton", "Sugarcane", "Vegetables", "Fruits", "Spices", "All Crops")

STOCK_OPERATIONS = ("add", "subtract", "set")


class Product(db.Model):
    """
    Product catalog entry with its on-hand stock.

    TENANCY: Products are scoped to the owning user via created_by_user_id.

    STOCK: stock_quantity is a mutable counter (never negative). It is changed by
    the stock adjustment endpoint and by order creation/cancellation. version_id
    makes concurrent decrements of the same product retry instead of losing an
    update.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_owner_active", "created_by_user_id", "is_active"),
        db.Index("ix_products_category_active", "category", "is_active"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=False)
    subcategory = db.Column(db.String(128), nullable=True)
    brand = db.Column(db.String(128), nullable=False)

    # Authoritative storage in paise (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    pack_size_value = db.Column(db.Integer, nullable=False, default=1)
    pack_size_unit = db.Column(db.String(16), nullable=False, default="pieces")

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=10)

    crop_types = db.Column(db.JSON, nullable=False, default=list)
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Sales analytics (updated at checkout)
    total_sold = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    last_sold_date = db.Column(db.DateTime(timezone=True), nullable=True)
    last_restock_date = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.minimum_stock

    def record_sale(self, quantity: int, unit_price_cents: int, sold_at) -> None:
        self.total_sold = (self.total_sold or 0) + quantity
        self.total_revenue_cents = (self.total_revenue_cents or 0) + quantity * unit_price_cents
        self.last_sold_date = sold_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "subcategory": self.subcategory,
            "brand": self.brand,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "pack_size": {"value": self.pack_size_value, "unit": self.pack_size_unit},
            "stock_quantity": self.stock_quantity,
            "minimum_stock": self.minimum_stock,
            "is_low_stock": self.is_low_stock,
            "crop_types": list(self.crop_types or []),
            "batch_number": self.batch_number,
            "expiry_date": to_utc_z(self.expiry_date),
            "total_sold": self.total_sold,
            "total_revenue_cents": self.total_revenue_cents,
            "last_sold_date": to_utc_z(self.last_sold_date),
            "last_restock_date": to_utc_z(self.last_restock_date),
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
