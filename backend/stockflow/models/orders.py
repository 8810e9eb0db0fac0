from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "returned",
)

PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")


class Order(db.Model):
    """
    Customer order.

    Created on checkout, mutated only through order_lifecycle (status) and
    fulfillment_service (payment status). Never deleted.

    CONCURRENCY: version_id_col makes a concurrent transition on the same
    order fail with StaleDataError instead of silently overwriting.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_number"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending")
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    payment_method = db.Column(db.String(32), nullable=False)

    shipping_address = db.Column(db.JSON, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    coupon_code = db.Column(db.String(64), nullable=True)
    coupon_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    loyalty_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Set once the loyalty-earn collaborator has been scheduled
    loyalty_awarded = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.String(1000), nullable=True)
    admin_notes = db.Column(db.String(1000), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    status_events = db.relationship(
        "OrderStatusEvent",
        backref="order",
        lazy=True,
        order_by="OrderStatusEvent.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    @property
    def spent_loyalty_points(self) -> bool:
        return (self.loyalty_points_used or 0) > 0

    def status_timestamps(self) -> dict:
        """Latest time each status was entered, derived from the event list."""
        stamps: dict[str, str | None] = {}
        for event in self.status_events:
            stamps[event.status] = to_utc_z(event.occurred_at)
        return stamps

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "shipping_address": self.shipping_address,
            "subtotal_cents": self.subtotal_cents,
            "coupon_code": self.coupon_code,
            "coupon_discount_cents": self.coupon_discount_cents,
            "loyalty_points_used": self.loyalty_points_used,
            "loyalty_discount_cents": self.loyalty_discount_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "total_cents": self.total_cents,
            "loyalty_awarded": self.loyalty_awarded,
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "status_timestamps": self.status_timestamps(),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["status_history"] = [event.to_dict() for event in self.status_events]
        return data


class OrderItem(db.Model):
    """Immutable line snapshot taken at checkout."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_sku": self.variant_sku,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


class OrderStatusEvent(db.Model):
    """
    Append-only status history.

    One row per accepted transition (plus the initial status). Repeated or
    out-of-order entries stay unambiguous because rows are ordered by id.
    """
    __tablename__ = "order_status_events"
    __table_args__ = (
        db.Index("ix_order_status_events_order", "order_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    status = db.Column(db.String(16), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    actor_user_id = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(500), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_status": self.from_status,
            "status": self.status,
            "occurred_at": to_utc_z(self.occurred_at),
            "actor_user_id": self.actor_user_id,
            "note": self.note,
        }
