from __future__ import annotations

from ..extensions import db
from tokopos.time_utils import to_utc_z


class Unit(db.Model):
    """Unit of measure (pcs, kg, box, crate...)."""
    __tablename__ = "units"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Unit id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product.stock is a running counter in BASE units. It is only ever changed
    by the stock ledger writer, in the same transaction that appends the
    matching StockMutation row, so that

        stock == SUM(stock_mutations.qty_base_unit)

    holds for every product at every commit.

    COSTING:
    - average_cost: weighted average cost per base unit of the stock on hand
    - last_purchase_cost: cost per base unit of the most recent purchase line
    Both are recomputed only by inbound cost-bearing movements (purchases and
    positive adjustments that specify a unit cost).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(150), nullable=False)

    base_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    stock = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    min_stock = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    average_cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    last_purchase_cost = db.Column(db.Numeric(14, 4), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    base_unit = db.relationship("Unit")
    category = db.relationship("Category")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self, include_variants: bool = False) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "base_unit_id": self.base_unit_id,
            "base_unit": self.base_unit.name if self.base_unit else None,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "average_cost": self.average_cost,
            "last_purchase_cost": self.last_purchase_cost,
            "is_active": self.is_active,
            "is_low_stock": self.stock <= self.min_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants if not v.is_archived]
        return data


class ProductVariant(db.Model):
    """
    Sellable/purchasable packaging of a product.

    conversion_to_base: how many base units one variant unit holds
    (e.g. base unit "pcs", variant "box of 12" -> 12). Always > 0.

    Historical documents snapshot the factor (unit_factor_at_sale, etc.),
    so changing it later never rewrites history.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("conversion_to_base > 0", name="ck_variants_conversion_positive"),
        db.CheckConstraint("sell_price >= 0", name="ck_variants_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)

    name = db.Column(db.String(100), nullable=False)
    sku = db.Column(db.String(60), nullable=False, unique=True)

    conversion_to_base = db.Column(db.Numeric(14, 4), nullable=False)
    sell_price = db.Column(db.Numeric(14, 2), nullable=False)

    is_archived = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship(
        "Product",
        backref=db.backref("variants", lazy=True, order_by="ProductVariant.id"),
    )
    unit = db.relationship("Unit")

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r} x{self.conversion_to_base}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "unit": self.unit.name if self.unit else None,
            "name": self.name,
            "sku": self.sku,
            "conversion_to_base": self.conversion_to_base,
            "sell_price": self.sell_price,
            "is_archived": self.is_archived,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
