from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

ADJUSTMENT_REASONS = (
    "damaged",
    "expired",
    "lost",
    "theft",
    "returned",
    "defective",
    "waste",
    "other",
)


class DocumentSequence(db.Model):
    """
    Atomic document sequences (PUR, ADJ, ORD).

    WHY: count-then-format numbering collides under concurrent creation;
    the counter row is incremented with a single UPDATE instead.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class Purchase(db.Model):
    """
    Restock batch (stock-in with unit cost capture).

    Totals are computed from lines at creation and never edited.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("purchase_number", name="uq_purchases_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_number = db.Column(db.String(32), nullable=False)

    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    performed_by_user_id = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    lines = db.relationship(
        "PurchaseLine",
        backref="purchase",
        lazy=True,
        order_by="PurchaseLine.id",
    )

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "purchase_number": self.purchase_number,
            "total_quantity": self.total_quantity,
            "total_cost_cents": self.total_cost_cents,
            "performed_by_user_id": self.performed_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        else:
            data["item_count"] = len(self.lines)
        return data


class PurchaseLine(db.Model):
    __tablename__ = "purchase_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_lines_quantity_positive"),
        db.CheckConstraint("unit_cost_cents >= 0", name="ck_purchase_lines_cost_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_sku = db.Column(db.String(64), nullable=True)
    variant_attributes = db.Column(db.JSON, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    previous_unit_cost_cents = db.Column(db.Integer, nullable=True)
    line_total_cents = db.Column(db.Integer, nullable=False)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "variant": (
                {"sku": self.variant_sku, "attributes": self.variant_attributes or []}
                if self.variant_sku else None
            ),
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "previous_unit_cost_cents": self.previous_unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "ledger_entry_id": self.ledger_entry_id,
        }


class StockAdjustment(db.Model):
    """Stock-out batch explained by a fixed loss-reason taxonomy."""
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.UniqueConstraint("adjustment_number", name="uq_stock_adjustments_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    adjustment_number = db.Column(db.String(32), nullable=False)

    total_quantity = db.Column(db.Integer, nullable=False, default=0)

    performed_by_user_id = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    lines = db.relationship(
        "StockAdjustmentLine",
        backref="adjustment",
        lazy=True,
        order_by="StockAdjustmentLine.id",
    )

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "adjustment_number": self.adjustment_number,
            "total_quantity": self.total_quantity,
            "performed_by_user_id": self.performed_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        else:
            data["item_count"] = len(self.lines)
        return data


class StockAdjustmentLine(db.Model):
    __tablename__ = "stock_adjustment_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_adjustment_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    adjustment_id = db.Column(db.Integer, db.ForeignKey("stock_adjustments.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_sku = db.Column(db.String(64), nullable=True)
    variant_attributes = db.Column(db.JSON, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.String(1000), nullable=True)

    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "adjustment_id": self.adjustment_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "variant": (
                {"sku": self.variant_sku, "attributes": self.variant_attributes or []}
                if self.variant_sku else None
            ),
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "notes": self.notes,
            "ledger_entry_id": self.ledger_entry_id,
        }
