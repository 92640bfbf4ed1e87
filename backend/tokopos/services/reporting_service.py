# Overview: Read-only aggregation over sales, returns, debts and purchases for dashboards.

from __future__ import annotations

from sqlalchemy import case, or_

from ..extensions import db
from ..models import CustomerReturn, Debt, Product, PurchaseOrder, Sale, SaleItem
from ..money import q_money, q_stock
from .debt_service import OPEN_DEBT_STATUSES
from .purchase_service import PURCHASE_RECEIVED
from .return_service import COMPENSATION_CREDIT_NOTE, RETURN_CANCELLED, SURPLUS_CREDIT_BALANCE
from .sales_service import SALE_CANCELLED


def _in_range(query, column, start, end):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query


def sales_summary(start=None, end=None) -> dict:
    """
    Dashboard totals for a date range (inclusive). Cancelled documents are
    excluded everywhere.

    net_revenue = gross_sales - cost of goods sold, where cost of goods uses
    the frozen cost_at_sale snapshot (per base unit) of each line.

    total_refunds is cash paid back (refunds and exchange surplus paid in
    cash); total_store_credit is what went onto customer balances instead.
    """
    sales = _in_range(
        db.session.query(
            db.func.count(Sale.id),
            db.func.coalesce(db.func.sum(Sale.total_price), 0),
            db.func.coalesce(db.func.sum(Sale.total_balance_used), 0),
        ).filter(Sale.status != SALE_CANCELLED),
        Sale.created_at,
        start,
        end,
    ).one()
    transaction_count, gross_sales, balance_used = sales

    cogs = _in_range(
        db.session.query(
            db.func.coalesce(
                db.func.sum(SaleItem.cost_at_sale * SaleItem.qty * SaleItem.unit_factor_at_sale), 0
            )
        )
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.status != SALE_CANCELLED),
        Sale.created_at,
        start,
        end,
    ).scalar()

    debt_created = _in_range(
        db.session.query(db.func.coalesce(db.func.sum(Debt.original_amount), 0))
        .join(Sale, Sale.id == Debt.sale_id)
        .filter(Sale.status != SALE_CANCELLED),
        Sale.created_at,
        start,
        end,
    ).scalar()

    outstanding_debt = (
        db.session.query(db.func.coalesce(db.func.sum(Debt.remaining_amount), 0))
        .filter(Debt.is_active.is_(True), Debt.status.in_(OPEN_DEBT_STATUSES))
        .scalar()
    )

    # credit notes and exchange surplus kept as balance never leave the till
    kept_as_credit = or_(
        CustomerReturn.compensation_type == COMPENSATION_CREDIT_NOTE,
        CustomerReturn.surplus_strategy == SURPLUS_CREDIT_BALANCE,
    )
    return_count, refunds, store_credit = _in_range(
        db.session.query(
            db.func.count(CustomerReturn.id),
            db.func.coalesce(db.func.sum(case((kept_as_credit, 0), else_=CustomerReturn.total_refund)), 0),
            db.func.coalesce(db.func.sum(case((kept_as_credit, CustomerReturn.total_refund), else_=0)), 0),
        ).filter(CustomerReturn.status != RETURN_CANCELLED),
        CustomerReturn.created_at,
        start,
        end,
    ).one()

    purchase_count, purchase_total = _in_range(
        db.session.query(
            db.func.count(PurchaseOrder.id),
            db.func.coalesce(db.func.sum(PurchaseOrder.total), 0),
        ).filter(PurchaseOrder.status == PURCHASE_RECEIVED),
        PurchaseOrder.created_at,
        start,
        end,
    ).one()

    gross_sales = q_money(gross_sales)
    cost_of_goods = q_money(cogs)
    return {
        "transaction_count": int(transaction_count or 0),
        "gross_sales": gross_sales,
        "cost_of_goods_sold": cost_of_goods,
        "net_revenue": gross_sales - cost_of_goods,
        "balance_used": q_money(balance_used),
        "debt_created": q_money(debt_created),
        "outstanding_debt": q_money(outstanding_debt),
        "return_count": int(return_count or 0),
        "total_refunds": q_money(refunds),
        "total_store_credit": q_money(store_credit),
        "purchase_count": int(purchase_count or 0),
        "purchase_total": q_money(purchase_total),
    }


def top_products(start=None, end=None, limit: int = 10) -> list[dict]:
    """Best sellers by quantity sold in base units."""
    qty_base = db.func.sum(SaleItem.qty * SaleItem.unit_factor_at_sale)
    rows = _in_range(
        db.session.query(
            Product.id,
            Product.sku,
            Product.name,
            qty_base.label("qty_base"),
            db.func.sum(SaleItem.subtotal).label("revenue"),
        )
        .join(SaleItem, SaleItem.product_id == Product.id)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.status != SALE_CANCELLED),
        Sale.created_at,
        start,
        end,
    ).group_by(Product.id, Product.sku, Product.name).order_by(qty_base.desc(), Product.id.asc()).limit(limit).all()

    return [
        {
            "product_id": row.id,
            "sku": row.sku,
            "name": row.name,
            "qty_base": q_stock(row.qty_base),
            "revenue": q_money(row.revenue),
        }
        for row in rows
    ]
