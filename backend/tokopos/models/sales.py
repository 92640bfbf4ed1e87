from __future__ import annotations

from ..extensions import db
from tokopos.time_utils import to_utc_z


class Sale(db.Model):
    """
    Checkout document.

    STATUS LIFECYCLE:
    - completed: fully paid at checkout (or its debt was later settled)
    - debt: under-paid, an active Debt row holds the remainder
    - refunded: every line has been returned
    - cancelled: voided; stock, balance and debt were reversed

    MONEY FIELDS:
    - total_price: subtotal of lines (Σ qty * price_at_sale)
    - total_balance_used: store credit applied
    - total_paid: cash/card tendered
    - total_return: change handed back after any old-debt settlement
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created_status", "created_at", "status"),
        db.Index("ix_sales_customer", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    total_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_paid = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_return = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_balance_used = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    customer = db.relationship("Customer")

    def __repr__(self) -> str:
        return f"<Sale id={self.id} {self.invoice_number} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "total_price": self.total_price,
            "total_paid": self.total_paid,
            "total_return": self.total_return,
            "total_balance_used": self.total_balance_used,
            "status": self.status,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["debt"] = self.debt.to_dict() if self.debt else None
        return data


class SaleItem(db.Model):
    """
    One sale line.

    WHY SNAPSHOTS:
    price_at_sale, unit_factor_at_sale and cost_at_sale are frozen at checkout.
    Later price or conversion edits on the variant, or cost changes on the
    product, never change what this sale reports, refunds or reverses.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    qty = db.Column(db.Numeric(14, 3), nullable=False)
    price_at_sale = db.Column(db.Numeric(14, 2), nullable=False)
    unit_factor_at_sale = db.Column(db.Numeric(14, 4), nullable=False)
    # Product.average_cost per BASE unit at checkout
    cost_at_sale = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False)

    sale = db.relationship(
        "Sale",
        backref=db.backref("items", lazy=True, order_by="SaleItem.id"),
    )
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "variant_id": self.variant_id,
            "variant_name": self.variant.name if self.variant else None,
            "qty": self.qty,
            "price_at_sale": self.price_at_sale,
            "unit_factor_at_sale": self.unit_factor_at_sale,
            "cost_at_sale": self.cost_at_sale,
            "subtotal": self.subtotal,
        }
