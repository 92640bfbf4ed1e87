from __future__ import annotations

from ..extensions import db
from tokopos.time_utils import to_utc_z


class CustomerReturn(db.Model):
    """
    Customer return / exchange document.

    COMPENSATION TYPES:
    - refund: cash back for the returned value
    - credit_note: returned value added to the customer's credit balance
    - exchange: replacement goods; the net (returned - exchange) is handed
      over according to surplus_strategy (cash or credit_balance)

    A return is linked to exactly one sale and only references that sale's
    lines. Cancelling writes offsetting ledger rows; nothing is deleted.
    """
    __tablename__ = "customer_returns"
    __table_args__ = (
        db.Index("ix_customer_returns_sale", "sale_id"),
        db.Index("ix_customer_returns_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(64), nullable=False, unique=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    total_value_returned = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_value_exchange = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_refund = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    compensation_type = db.Column(db.String(16), nullable=False)
    surplus_strategy = db.Column(db.String(16), nullable=True)
    reason = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True, order_by="CustomerReturn.id"))
    customer = db.relationship("Customer")

    def __repr__(self) -> str:
        return f"<CustomerReturn id={self.id} {self.return_number} {self.compensation_type}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "sale_id": self.sale_id,
            "invoice_number": self.sale.invoice_number if self.sale else None,
            "customer_id": self.customer_id,
            "total_value_returned": self.total_value_returned,
            "total_value_exchange": self.total_value_exchange,
            "total_refund": self.total_refund,
            "compensation_type": self.compensation_type,
            "surplus_strategy": self.surplus_strategy,
            "reason": self.reason,
            "status": self.status,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_user_id": self.cancelled_by_user_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["exchange_items"] = [item.to_dict() for item in self.exchange_items]
        return data


class CustomerReturnItem(db.Model):
    """
    Returned line.

    price_at_return is the original price_at_sale and unit_factor_at_return the
    original unit_factor_at_sale: refunds and restocks use the values the
    customer actually paid, not current catalog values.
    """
    __tablename__ = "customer_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("customer_returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    qty = db.Column(db.Numeric(14, 3), nullable=False)
    price_at_return = db.Column(db.Numeric(14, 2), nullable=False)
    unit_factor_at_return = db.Column(db.Numeric(14, 4), nullable=False)
    returned_to_stock = db.Column(db.Boolean, nullable=False, default=True)
    reason = db.Column(db.Text, nullable=True)

    customer_return = db.relationship(
        "CustomerReturn",
        backref=db.backref("items", lazy=True, order_by="CustomerReturnItem.id"),
    )
    sale_item = db.relationship("SaleItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "price_at_return": self.price_at_return,
            "unit_factor_at_return": self.unit_factor_at_return,
            "returned_to_stock": self.returned_to_stock,
            "reason": self.reason,
        }


class CustomerExchangeItem(db.Model):
    """Replacement goods handed out in an exchange, priced at current sell_price."""
    __tablename__ = "customer_exchange_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("customer_returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    qty = db.Column(db.Numeric(14, 3), nullable=False)
    price_at_exchange = db.Column(db.Numeric(14, 2), nullable=False)
    unit_factor_at_exchange = db.Column(db.Numeric(14, 4), nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False)

    customer_return = db.relationship(
        "CustomerReturn",
        backref=db.backref("exchange_items", lazy=True, order_by="CustomerExchangeItem.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "price_at_exchange": self.price_at_exchange,
            "unit_factor_at_exchange": self.unit_factor_at_exchange,
            "subtotal": self.subtotal,
        }
