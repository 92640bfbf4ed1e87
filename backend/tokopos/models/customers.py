from __future__ import annotations

from ..extensions import db
from tokopos.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data.

    credit_balance: store credit (voucher) the customer can spend at checkout.
    Increased by credit-note returns and exchange surplus, decreased when used
    as payment. Every change is logged in CustomerBalanceMutation.

    total_debt is not stored: it is the sum of remaining_amount over the
    customer's active debts (see debt_service.get_customer_total_debt).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("credit_balance >= 0", name="ck_customers_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    credit_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "credit_balance": self.credit_balance,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CustomerBalanceMutation(db.Model):
    """
    Append-only log of credit balance changes.

    TYPES:
    - sale_payment: balance spent at checkout (negative)
    - sale_cancel: balance given back when a sale is cancelled (positive)
    - credit_note: return compensated as store credit (positive)
    - exchange_surplus: exchange surplus kept as store credit (positive)
    - return_cancel / exchange_surplus_cancel: reversal of the two above (negative)
    """
    __tablename__ = "customer_balance_mutations"
    __table_args__ = (
        db.Index("ix_balance_mutations_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    balance_before = db.Column(db.Numeric(14, 2), nullable=False)
    balance_after = db.Column(db.Numeric(14, 2), nullable=False)

    reference = db.Column(db.String(100), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("balance_mutations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "type": self.type,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
