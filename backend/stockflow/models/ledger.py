from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

MOVEMENT_ADD = "add"
MOVEMENT_REMOVE = "remove"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = (MOVEMENT_ADD, MOVEMENT_REMOVE, MOVEMENT_ADJUSTMENT)


class StockLedgerEntry(db.Model):
    """
    Append-only record of one stock change.

    IMMUTABILITY: rows are inserted by ledger_service.record_stock_movement
    and never updated or deleted.

    ARITHMETIC (enforced by CHECK):
    - add:               new_stock = previous_stock + quantity
    - remove/adjustment: new_stock = previous_stock - quantity
    - quantity_delta is the signed change (new_stock - previous_stock)
    """
    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_ledger_quantity_positive"),
        db.CheckConstraint("previous_stock >= 0 AND new_stock >= 0", name="ck_stock_ledger_non_negative"),
        db.CheckConstraint("quantity_delta = new_stock - previous_stock", name="ck_stock_ledger_delta"),
        db.CheckConstraint(
            "(type = 'add' AND new_stock = previous_stock + quantity) OR "
            "(type IN ('remove', 'adjustment') AND new_stock = previous_stock - quantity)",
            name="ck_stock_ledger_arithmetic",
        ),
        db.Index("ix_stock_ledger_product_created", "product_id", "created_at"),
        db.Index("ix_stock_ledger_product_sku", "product_id", "variant_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Variant snapshot (the variant row may change later)
    variant_sku = db.Column(db.String(64), nullable=True)
    variant_attributes = db.Column(db.JSON, nullable=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(500), nullable=False)
    # Free text: purchase/adjustment/order number
    reference = db.Column(db.String(100), nullable=True, index=True)
    performed_by_user_id = db.Column(db.String(64), nullable=True, index=True)
    cost_cents = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("ledger_entries", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry id={self.id} product_id={self.product_id} type={self.type} "
            f"{self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant": (
                {"sku": self.variant_sku, "attributes": self.variant_attributes or []}
                if self.variant_sku else None
            ),
            "type": self.type,
            "quantity": self.quantity,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference": self.reference,
            "performed_by_user_id": self.performed_by_user_id,
            "cost_cents": self.cost_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
