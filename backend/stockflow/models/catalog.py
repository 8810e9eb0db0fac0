from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

DEFAULT_LOW_STOCK_THRESHOLD = 5


class Product(db.Model):
    """
    Product stock master.

    The catalog (descriptions, images, categories, search) lives elsewhere;
    this core owns the stock-related fields only.

    STOCK INVARIANT:
    - With variants: total_stock == SUM(product_variants.stock_quantity).
      total_stock is a projection; never write it directly, go through
      stock_service.apply_stock_delta which recomputes it in the same
      transaction.
    - Without variants: total_stock is authoritative and mutated in place.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("total_stock >= 0", name="ck_products_total_stock_non_negative"),
        db.CheckConstraint("total_sold >= 0", name="ck_products_total_sold_non_negative"),
        db.Index("ix_products_active_stock", "is_active", "total_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)
    # Last purchase unit cost (overwritten, not averaged)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    total_stock = db.Column(db.Integer, nullable=False, default=0)
    # Lifetime units delivered
    total_sold = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_LOW_STOCK_THRESHOLD)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        lazy=True,
        order_by="ProductVariant.id",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} total_stock={self.total_stock}>"

    @property
    def has_variants(self) -> bool:
        return bool(self.variants)

    def to_dict(self, *, include_variants: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "total_stock": self.total_stock,
            "total_sold": self.total_sold,
            "low_stock_threshold": self.low_stock_threshold,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class ProductVariant(db.Model):
    """
    Purchasable SKU of a product with its own stock and price.

    SKUs are globally unique; the (product_id, sku) pair is what every stock
    mutation matches on.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_product_variants_stock_non_negative"),
        db.Index("ix_product_variants_product_sku", "product_id", "sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)

    # [{"name": "Size", "value": "M"}, ...]
    attributes = db.Column(db.JSON, nullable=False, default=list)

    current_price_cents = db.Column(db.Integer, nullable=True)
    original_price_cents = db.Column(db.Integer, nullable=True)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_LOW_STOCK_THRESHOLD)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "attributes": self.attributes or [],
            "current_price_cents": self.current_price_cents,
            "original_price_cents": self.original_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock_quantity": self.stock_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_active": self.is_active,
        }
