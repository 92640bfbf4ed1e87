from __future__ import annotations

from ..extensions import db
from tokopos.time_utils import to_utc_z


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30), nullable=True)
    address = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    """
    Goods received from a supplier.

    Purchases are received on creation (status RECEIVED): stock goes up and
    the weighted average cost is recomputed line by line. Cancelling writes
    purchase_cancel mutations and restores the pre-purchase average cost.
    Editing does the same for the old lines (reference EDIT-<order number>)
    and then receives the new lines under the same order number.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="received", index=True)
    total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    supplier = db.relationship("Supplier")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "supplier_id": self.supplier_id,
            "status": self.status,
            "total": self.total,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    qty = db.Column(db.Numeric(14, 3), nullable=False)
    # Price per VARIANT unit, as written on the supplier invoice
    price = db.Column(db.Numeric(14, 2), nullable=False)
    unit_factor_at_purchase = db.Column(db.Numeric(14, 4), nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False)

    # Product.average_cost right before this line was received
    cost_before = db.Column(db.Numeric(14, 4), nullable=False)

    purchase = db.relationship(
        "PurchaseOrder",
        backref=db.backref("items", lazy=True, order_by="PurchaseItem.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "price": self.price,
            "unit_factor_at_purchase": self.unit_factor_at_purchase,
            "subtotal": self.subtotal,
            "cost_before": self.cost_before,
        }
