# Overview: Service-layer operations for reporting; read-only views over the ledgers.

from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import func

from stockroom.errors import NotFoundError
from stockroom.extensions import db
from stockroom.models import (
    InventoryItem,
    Sale,
    SaleRefund,
    SaleRefundLine,
    SaleTransaction,
)
from stockroom.time_utils import to_utc_z, utcnow
from stockroom.validation import ValidationError


def _item_row(item: InventoryItem) -> dict:
    return {
        "id": item.id,
        "sku": item.sku,
        "name": item.name,
        "category_name": item.category.name if item.category else None,
        "quantity": item.quantity,
        "min_stock_level": item.min_stock_level,
        "stock_status": item.stock_status,
        "price_cents": item.price_cents,
        "cost_cents": item.cost_cents,
        "margin": item.margin,
    }


def low_stock_report() -> dict:
    items = (
        db.session.query(InventoryItem)
        .filter(InventoryItem.quantity <= InventoryItem.min_stock_level)
        .order_by(InventoryItem.quantity.asc(), InventoryItem.name.asc())
        .all()
    )
    rows = []
    for item in items:
        row = _item_row(item)
        row["shortfall"] = item.min_stock_level - item.quantity
        rows.append(row)

    return {
        "generated_at": to_utc_z(utcnow()),
        "items": rows,
        "summary": {
            "low_count": sum(1 for r in rows if r["stock_status"] == "low"),
            "out_of_stock_count": sum(1 for r in rows if r["stock_status"] == "out_of_stock"),
        },
    }


def margin_band(margin: float, *, low_threshold: float, high_threshold: float) -> str:
    if margin < low_threshold:
        return "low"
    if margin < high_threshold:
        return "medium"
    return "high"


def margin_report(*, low_threshold: float, high_threshold: float) -> dict:
    if low_threshold > high_threshold:
        raise ValidationError("low threshold must not exceed high threshold")

    items = db.session.query(InventoryItem).order_by(InventoryItem.margin.desc(), InventoryItem.id.asc()).all()

    bands: dict[str, list[dict]] = {"low": [], "medium": [], "high": []}
    for item in items:
        bands[margin_band(item.margin, low_threshold=low_threshold, high_threshold=high_threshold)].append(
            _item_row(item)
        )

    average = sum(i.margin for i in items) / len(items) if items else 0.0

    return {
        "generated_at": to_utc_z(utcnow()),
        "thresholds": {"low": low_threshold, "high": high_threshold},
        "bands": bands,
        "summary": {
            "item_count": len(items),
            "average_margin": average,
            "low_count": len(bands["low"]),
            "medium_count": len(bands["medium"]),
            "high_count": len(bands["high"]),
        },
    }


SALES_GROUPINGS = ("day", "week", "month")


def period_start(moment: datetime, group_by: str) -> date:
    """First day of the day/week/month containing ``moment``. Weeks start on Monday."""
    day = moment.date()
    if group_by == "week":
        return day - timedelta(days=day.weekday())
    if group_by == "month":
        return day.replace(day=1)
    return day


def _sales_trend(sale_filters: list, group_by: str) -> list[dict]:
    buckets: dict[date, dict] = {}
    rows = (
        db.session.query(Sale.date, Sale.subtotal_cents, Sale.total_cents)
        .filter(*sale_filters)
        .order_by(Sale.date.asc())
        .all()
    )
    for sale_date, subtotal, total in rows:
        key = period_start(sale_date, group_by)
        bucket = buckets.setdefault(key, {"sales_count": 0, "revenue_cents": 0, "total_cents": 0})
        bucket["sales_count"] += 1
        bucket["revenue_cents"] += subtotal
        bucket["total_cents"] += total

    return [{"period": key.isoformat(), **buckets[key]} for key in sorted(buckets)]


def sales_report(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    group_by: str = "day",
    inventory_item_id: int | None = None,
    top: int = 5,
) -> dict:
    """
    Totals over COMPLETED sales in [start, end], a revenue trend bucketed by
    day, week or month, and the best-selling items by net units.

    With inventory_item_id, only sales containing that item are counted and
    the item breakdown is narrowed to it.
    """
    if group_by not in SALES_GROUPINGS:
        raise ValidationError(f"group_by must be one of: {', '.join(SALES_GROUPINGS)}")
    if start and end and start > end:
        raise ValidationError("start_date must be on or before end_date")
    if inventory_item_id is not None and db.session.get(InventoryItem, inventory_item_id) is None:
        raise NotFoundError(f"Inventory item {inventory_item_id} not found")

    sale_filters = [Sale.status == "COMPLETED"]
    if start:
        sale_filters.append(Sale.date >= start)
    if end:
        sale_filters.append(Sale.date <= end)
    line_filters = list(sale_filters)
    if inventory_item_id is not None:
        sale_filters.append(
            Sale.id.in_(
                db.session.query(SaleTransaction.sale_id)
                .filter(SaleTransaction.inventory_item_id == inventory_item_id)
            )
        )
        line_filters.append(SaleTransaction.inventory_item_id == inventory_item_id)

    count, revenue, tax = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.subtotal_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
    ).filter(*sale_filters).one()

    sold = {
        item_id: (int(qty or 0), int(amount or 0))
        for item_id, qty, amount in (
            db.session.query(
                SaleTransaction.inventory_item_id,
                func.sum(SaleTransaction.quantity),
                func.sum(SaleTransaction.subtotal_cents),
            )
            .join(Sale, SaleTransaction.sale_id == Sale.id)
            .filter(*line_filters)
            .group_by(SaleTransaction.inventory_item_id)
            .all()
        )
    }
    refunded = {
        item_id: (int(qty or 0), int(amount or 0))
        for item_id, qty, amount in (
            db.session.query(
                SaleTransaction.inventory_item_id,
                func.sum(SaleRefundLine.quantity),
                func.sum(SaleRefundLine.amount_cents),
            )
            .select_from(SaleRefundLine)
            .join(SaleTransaction, SaleRefundLine.sale_transaction_id == SaleTransaction.id)
            .join(SaleRefund, SaleRefundLine.refund_id == SaleRefund.id)
            .join(Sale, SaleRefund.sale_id == Sale.id)
            .filter(*line_filters)
            .group_by(SaleTransaction.inventory_item_id)
            .all()
        )
    }

    net = {
        item_id: (qty - refunded.get(item_id, (0, 0))[0], amount - refunded.get(item_id, (0, 0))[1])
        for item_id, (qty, amount) in sold.items()
    }
    ranked = sorted(
        ((item_id, units, amount) for item_id, (units, amount) in net.items() if units > 0),
        key=lambda row: (-row[1], row[0]),
    )[:top]

    top_items = []
    for item_id, units, amount in ranked:
        item = db.session.get(InventoryItem, item_id)
        top_items.append({
            "inventory_item_id": item_id,
            "sku": item.sku if item else None,
            "name": item.name if item else None,
            "units_sold": units,
            "revenue_cents": amount,
        })

    return {
        "generated_at": to_utc_z(utcnow()),
        "range": {"start": to_utc_z(start), "end": to_utc_z(end)},
        "group_by": group_by,
        "inventory_item_id": inventory_item_id,
        "summary": {
            "sales_count": count,
            "revenue_cents": int(revenue),
            "tax_cents": int(tax),
            "total_cents": int(revenue) + int(tax),
            "average_sale_cents": int(revenue) // count if count else 0,
        },
        "trend": _sales_trend(sale_filters, group_by),
        "top_items": top_items,
    }
