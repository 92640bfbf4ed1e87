from __future__ import annotations

from ..extensions import db
from tokopos.time_utils import to_utc_z, utcnow


# Mutation types. Direction is fixed by the caller, not inferred here:
# positive qty_base_unit = stock in, negative = stock out.
MUTATION_PURCHASE = "purchase"
MUTATION_PURCHASE_CANCEL = "purchase_cancel"
MUTATION_SALE = "sale"
MUTATION_SALE_CANCEL = "sale_cancel"
MUTATION_RETURN_RESTOCK = "return_restock"
MUTATION_RETURN_CANCEL = "return_cancel"
MUTATION_WASTE = "waste"
MUTATION_SUPPLIER_RETURN = "supplier_return"
MUTATION_ADJUSTMENT = "adjustment"
MUTATION_EXCHANGE = "exchange"
MUTATION_EXCHANGE_CANCEL = "exchange_cancel"

MUTATION_TYPES = (
    MUTATION_PURCHASE,
    MUTATION_PURCHASE_CANCEL,
    MUTATION_SALE,
    MUTATION_SALE_CANCEL,
    MUTATION_RETURN_RESTOCK,
    MUTATION_RETURN_CANCEL,
    MUTATION_WASTE,
    MUTATION_SUPPLIER_RETURN,
    MUTATION_ADJUSTMENT,
    MUTATION_EXCHANGE,
    MUTATION_EXCHANGE_CANCEL,
)


class StockMutation(db.Model):
    """
    Append-only stock ledger.

    IMMUTABLE: Rows are never updated or deleted. Cancellations are recorded
    as new offsetting rows (sale_cancel, return_cancel, ...).

    reference ties the row to the document that caused it
    (INV-..., RET-..., PO-..., VOID-INV-..., etc.).
    """
    __tablename__ = "stock_mutations"
    __table_args__ = (
        db.Index("ix_stock_mutations_product_created", "product_id", "created_at"),
        db.Index("ix_stock_mutations_reference", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    qty_base_unit = db.Column(db.Numeric(14, 4), nullable=False)
    unit_factor_at_mutation = db.Column(db.Numeric(14, 4), nullable=True)

    reference = db.Column(db.String(100), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def __repr__(self) -> str:
        return f"<StockMutation id={self.id} {self.type} product={self.product_id} qty={self.qty_base_unit}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "type": self.type,
            "qty_base_unit": self.qty_base_unit,
            "unit_factor_at_mutation": self.unit_factor_at_mutation,
            "reference": self.reference,
            "note": self.note,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SupplierReturn(db.Model):
    """Goods sent back to a supplier (outbound, supplier_return mutation)."""
    __tablename__ = "supplier_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    qty = db.Column(db.Numeric(14, 3), nullable=False)
    unit_factor_at_return = db.Column(db.Numeric(14, 4), nullable=False)
    reason = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    supplier = db.relationship("Supplier")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "qty": self.qty,
            "unit_factor_at_return": self.unit_factor_at_return,
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
