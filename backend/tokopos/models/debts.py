from __future__ import annotations

from ..extensions import db
from tokopos.time_utils import to_utc_z, utcnow


class Debt(db.Model):
    """
    Receivable created by an under-paid sale.

    remaining_amount only goes down (through DebtPayment rows).
    A debt is "active" while is_active is true; paid and cancelled debts are
    inactive and no longer count toward the customer's total debt.
    """
    __tablename__ = "debts"
    __table_args__ = (
        db.Index("ix_debts_customer_active_created", "customer_id", "is_active", "created_at"),
        db.CheckConstraint("remaining_amount >= 0", name="ck_debts_remaining_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)

    original_amount = db.Column(db.Numeric(14, 2), nullable=False)
    remaining_amount = db.Column(db.Numeric(14, 2), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    sale = db.relationship("Sale", backref=db.backref("debt", uselist=False))
    customer = db.relationship("Customer")

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "invoice_number": self.sale.invoice_number if self.sale else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "original_amount": self.original_amount,
            "remaining_amount": self.remaining_amount,
            "status": self.status,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class DebtPayment(db.Model):
    """
    A single payment against a debt.

    source_sale_id is set when the payment came out of a later sale's change
    (should_pay_old_debt at checkout).
    """
    __tablename__ = "debt_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    debt_id = db.Column(db.Integer, db.ForeignKey("debts.id"), nullable=False, index=True)
    amount_paid = db.Column(db.Numeric(14, 2), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    note = db.Column(db.Text, nullable=True)

    source_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)

    debt = db.relationship(
        "Debt",
        backref=db.backref("payments", lazy=True, order_by="DebtPayment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "debt_id": self.debt_id,
            "amount_paid": self.amount_paid,
            "paid_at": to_utc_z(self.paid_at),
            "note": self.note,
            "source_sale_id": self.source_sale_id,
            "user_id": self.user_id,
        }
