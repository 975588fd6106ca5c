"""
Sales and Refund Ledger

A sale decrements stock for each line through the inventory ledger's stock
primitive. Cancelling a sale and refunding part of it both put stock back
with ADJUSTMENT movements that name the sale, so the movement log explains
every quantity change.

DESIGN PRINCIPLES:
- One transaction per operation: a sale, cancellation or refund either
  applies completely (stock, movements, totals) or not at all
- SaleTransaction rows are immutable; refunded quantities accumulate in
  SaleRefundLine and can never exceed the original line quantity
- total_cents == subtotal_cents + tax_cents after every operation; tax is
  recomputed from the remaining subtotal and the sale's own tax rate

LIFECYCLE:
COMPLETED (created) -> CANCELLED (terminal). Refunds keep the sale COMPLETED.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, SaleCancelledError
from ..extensions import db
from ..models import Sale, SaleRefund, SaleRefundLine, SaleTransaction
from ..validation import ValidationError, require_non_negative, require_positive
from stockroom.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import _apply_stock_delta, get_item


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_CANCELLED = "CANCELLED"
SALE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_CANCELLED)


# =============================================================================
# MONEY
# =============================================================================

def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """Tax on a subtotal, rounded half-up to the cent."""
    return (subtotal_cents * tax_rate_bps + 5000) // 10000


def _apply_totals(sale: Sale, subtotal_cents: int) -> None:
    sale.subtotal_cents = subtotal_cents
    sale.tax_cents = compute_tax_cents(subtotal_cents, sale.tax_rate_bps)
    sale.total_cents = sale.subtotal_cents + sale.tax_cents


# =============================================================================
# LOOKUPS
# =============================================================================

def get_sale(sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    sale = query.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def refunded_quantities(sale_id: int) -> dict[int, int]:
    """Cumulative refunded quantity per sale transaction id."""
    rows = (
        db.session.query(SaleRefundLine.sale_transaction_id, func.sum(SaleRefundLine.quantity))
        .join(SaleRefund, SaleRefundLine.refund_id == SaleRefund.id)
        .filter(SaleRefund.sale_id == sale_id)
        .group_by(SaleRefundLine.sale_transaction_id)
        .all()
    )
    return {tx_id: int(total or 0) for tx_id, total in rows}


def sale_to_dict(sale: Sale) -> dict:
    data = sale.to_dict(refunded=refunded_quantities(sale.id))
    data["refunds"] = [r.to_dict() for r in sale.refunds]
    return data


def list_sales(
    *,
    page: int = 1,
    per_page: int = 20,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    inventory_item_id: int | None = None,
    status: str | None = None,
) -> dict:
    if status is not None and status not in SALE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(SALE_STATUSES)}")

    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status)
    if start_date:
        query = query.filter(Sale.date >= start_date)
    if end_date:
        query = query.filter(Sale.date <= end_date)
    if inventory_item_id is not None:
        query = query.filter(
            Sale.id.in_(
                db.session.query(SaleTransaction.sale_id).filter(
                    SaleTransaction.inventory_item_id == inventory_item_id
                )
            )
        )
    query = query.order_by(Sale.date.desc(), Sale.id.desc())

    per_page = min(max(per_page or 20, 1), 100)  # Default 20, max 100
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    sales = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict(include_lines=False) for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# =============================================================================
# SALE CREATION
# =============================================================================

def create_sale(
    *,
    items: list[dict],
    notes: str | None = None,
    user_id: int | None = None,
    tax_rate_bps: int | None = None,
) -> Sale:
    """
    Record a sale and decrement stock for each line.

    items: [{"inventory_item_id", "quantity", "unit_price_cents"?}]
    unit_price_cents defaults to the item's current price. Any line short of
    stock aborts the whole sale.
    """
    if not items:
        raise ValidationError("A sale needs at least one item")
    for line in items:
        require_positive(line.get("quantity"), "quantity")
        if line.get("unit_price_cents") is not None:
            require_non_negative(line["unit_price_cents"], "unit_price_cents")

    if tax_rate_bps is None:
        tax_rate_bps = current_app.config["SALES_TAX_RATE_BPS"]

    def _op():
        sale = Sale(
            status=SALE_STATUS_COMPLETED,
            notes=notes,
            tax_rate_bps=tax_rate_bps,
            created_by_user_id=user_id,
            date=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        subtotal = 0
        # Lock in id order so concurrent multi-line sales cannot deadlock.
        for line in sorted(items, key=lambda entry: entry["inventory_item_id"]):
            item = get_item(line["inventory_item_id"], lock=True)
            unit_price = line.get("unit_price_cents")
            if unit_price is None:
                unit_price = item.price_cents
            line_subtotal = unit_price * line["quantity"]

            _apply_stock_delta(
                item,
                delta=-line["quantity"],
                movement_type="REMOVE",
                notes=f"Sale: {sale.id}",
                user_id=user_id,
            )
            db.session.add(SaleTransaction(
                sale_id=sale.id,
                inventory_item_id=item.id,
                quantity=line["quantity"],
                unit_price_cents=unit_price,
                subtotal_cents=line_subtotal,
            ))
            subtotal += line_subtotal

        _apply_totals(sale, subtotal)
        db.session.commit()
        return sale

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_sale(*, sale_id: int, user_id: int | None = None) -> Sale:
    """
    Cancel a COMPLETED sale and put its stock back.

    Units already refunded were restocked by the refund, so only the
    remaining quantity of each line is restored here.
    """
    def _op():
        sale = get_sale(sale_id, lock=True)
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleCancelledError(
                f"Sale {sale.id} is already cancelled",
                details={"sale_id": sale.id},
            )

        refunded = refunded_quantities(sale.id)
        for tx in sorted(sale.transactions, key=lambda t: t.inventory_item_id):
            remaining = tx.quantity - refunded.get(tx.id, 0)
            if remaining <= 0:
                continue
            item = get_item(tx.inventory_item_id, lock=True)
            _apply_stock_delta(
                item,
                delta=remaining,
                movement_type="ADJUSTMENT",
                notes=f"Sale cancelled: {sale.id}",
                user_id=user_id,
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = user_id
        db.session.commit()
        return sale

    return run_with_retry(_op)


# =============================================================================
# REFUNDS
# =============================================================================

def refund_sale(
    *,
    sale_id: int,
    items: list[dict],
    reason: str,
    user_id: int | None = None,
) -> tuple[Sale, SaleRefund]:
    """
    Refund some units of a COMPLETED sale.

    items: [{"transaction_id", "quantity"}]. Repeated transaction ids are
    summed. Cumulative refunds per line may not exceed the sold quantity.
    Stock is restored, totals are reduced and tax recomputed, and the reason
    is appended to the sale notes.
    """
    if not items:
        raise ValidationError("A refund needs at least one item")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")
    reason = reason.strip()

    requested: dict[int, int] = defaultdict(int)
    for line in items:
        requested[line["transaction_id"]] += require_positive(line.get("quantity"), "quantity")

    def _op():
        sale = get_sale(sale_id, lock=True)
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleCancelledError(
                f"Sale {sale.id} is cancelled and cannot be refunded",
                details={"sale_id": sale.id},
            )

        transactions = {tx.id: tx for tx in sale.transactions}
        already_refunded = refunded_quantities(sale.id)

        for tx_id, quantity in requested.items():
            tx = transactions.get(tx_id)
            if tx is None:
                raise ValidationError(
                    f"Transaction {tx_id} does not belong to sale {sale.id}"
                )
            refundable = tx.quantity - already_refunded.get(tx_id, 0)
            if quantity > refundable:
                raise ValidationError(
                    f"Cannot refund {quantity} of transaction {tx_id}; only {refundable} refundable"
                )

        refund = SaleRefund(
            sale_id=sale.id,
            reason=reason,
            refund_amount_cents=0,
            user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()

        refund_amount = 0
        for tx_id in sorted(requested, key=lambda t: transactions[t].inventory_item_id):
            tx = transactions[tx_id]
            quantity = requested[tx_id]
            amount = tx.unit_price_cents * quantity

            item = get_item(tx.inventory_item_id, lock=True)
            _apply_stock_delta(
                item,
                delta=quantity,
                movement_type="ADJUSTMENT",
                notes=f"Refund from sale: {sale.id}",
                user_id=user_id,
            )
            db.session.add(SaleRefundLine(
                refund_id=refund.id,
                sale_transaction_id=tx.id,
                quantity=quantity,
                amount_cents=amount,
            ))
            refund_amount += amount

        refund.refund_amount_cents = refund_amount
        _apply_totals(sale, sale.subtotal_cents - refund_amount)

        refund_note = f"Refund: {reason}"
        sale.notes = f"{sale.notes}\n{refund_note}" if sale.notes else refund_note

        db.session.commit()
        return sale, refund

    return run_with_retry(_op)
