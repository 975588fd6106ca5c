# Overview: Service-layer operations for the inventory ledger; items, stock movements and price history.

"""
Inventory Ledger

Every change to an item's on-hand quantity goes through _apply_stock_delta,
which refuses to go below zero and writes exactly one StockMovement with the
signed delta. Public operations lock the item row, run the change, and
commit inside run_with_retry, so a failed operation leaves neither a
quantity change nor a movement behind.

Prices and costs are integer cents; margin is derived from them and every
price/cost change appends one PriceHistory row in the same transaction.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_

from ..errors import ConflictError, InsufficientStockError, NotFoundError
from ..extensions import db
from ..models import Category, InventoryItem, PriceHistory, SaleTransaction, StockMovement
from ..validation import ValidationError, require_non_negative, require_positive
from stockroom.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


MOVEMENT_TYPES = ("INITIAL", "ADD", "REMOVE", "ADJUSTMENT")
STOCK_STATUSES = ("normal", "low", "out_of_stock")
DEFAULT_MIN_STOCK_LEVEL = 5


def calculate_margin(price_cents: int, cost_cents: int) -> float:
    """Margin as a percentage of cost; 0 when either side is not positive."""
    if cost_cents is None or price_cents is None or cost_cents <= 0 or price_cents <= 0:
        return 0.0
    return (price_cents - cost_cents) / cost_cents * 100


def stock_status(quantity: int, min_stock_level: int) -> str:
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= min_stock_level:
        return "low"
    return "normal"


def get_item(item_id: int, *, lock: bool = False) -> InventoryItem:
    query = db.session.query(InventoryItem).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    item = query.first()
    if item is None:
        raise NotFoundError(f"Inventory item {item_id} not found", details={"inventory_item_id": item_id})
    return item


def _ensure_category(category_id: int | None) -> None:
    if category_id is None:
        return
    if db.session.get(Category, category_id) is None:
        raise NotFoundError(f"Category {category_id} not found", details={"category_id": category_id})


def _ensure_unique_sku(sku: str, *, exclude_item_id: int | None = None) -> None:
    query = db.session.query(InventoryItem.id).filter(InventoryItem.sku == sku)
    if exclude_item_id is not None:
        query = query.filter(InventoryItem.id != exclude_item_id)
    if query.first() is not None:
        raise ConflictError(f"SKU '{sku}' already exists", details={"sku": sku})


# -- Stock primitive --


def _apply_stock_delta(
    item: InventoryItem,
    *,
    delta: int,
    movement_type: str,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """
    Change on-hand quantity by ``delta`` and record the movement.

    Does not commit. The caller must hold the item row (lock_for_update)
    and commit or roll back the surrounding transaction.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}")

    new_quantity = item.quantity + delta
    if new_quantity < 0:
        raise InsufficientStockError(
            f"Insufficient stock for {item.sku}: requested {-delta}, available {item.quantity}",
            details={
                "inventory_item_id": item.id,
                "requested": -delta,
                "available": item.quantity,
            },
        )

    now = utcnow()
    item.quantity = new_quantity
    item.last_updated = now

    movement = StockMovement(
        inventory_item_id=item.id,
        type=movement_type,
        quantity_delta=delta,
        quantity_after=new_quantity,
        notes=notes,
        user_id=user_id,
        date=now,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


# -- Stock operations --


def add_stock(
    *,
    item_id: int,
    quantity: int,
    notes: str | None = None,
    user_id: int | None = None,
) -> tuple[InventoryItem, StockMovement]:
    """Receive ``quantity`` units (ADD movement)."""
    require_positive(quantity, "quantity")

    def _op():
        item = get_item(item_id, lock=True)
        movement = _apply_stock_delta(
            item, delta=quantity, movement_type="ADD", notes=notes, user_id=user_id
        )
        db.session.commit()
        return item, movement

    return run_with_retry(_op)


def remove_stock(
    *,
    item_id: int,
    quantity: int,
    notes: str | None = None,
    user_id: int | None = None,
) -> tuple[InventoryItem, StockMovement]:
    """Take ``quantity`` units out (REMOVE movement). Never goes below zero."""
    require_positive(quantity, "quantity")

    def _op():
        item = get_item(item_id, lock=True)
        movement = _apply_stock_delta(
            item, delta=-quantity, movement_type="REMOVE", notes=notes, user_id=user_id
        )
        db.session.commit()
        return item, movement

    return run_with_retry(_op)


def adjust_stock(
    *,
    item_id: int,
    new_quantity: int,
    notes: str | None = None,
    user_id: int | None = None,
) -> tuple[InventoryItem, StockMovement]:
    """Set on-hand quantity to an absolute count (ADJUSTMENT movement carrying new - old)."""
    require_non_negative(new_quantity, "new_quantity")

    def _op():
        item = get_item(item_id, lock=True)
        old_quantity = item.quantity
        movement = _apply_stock_delta(
            item,
            delta=new_quantity - old_quantity,
            movement_type="ADJUSTMENT",
            notes=notes or f"Adjusted from {old_quantity} to {new_quantity} units",
            user_id=user_id,
        )
        db.session.commit()
        return item, movement

    return run_with_retry(_op)


def update_item_location(*, item_id: int, location: str | None) -> InventoryItem:
    """Set or clear (empty string / None) the storage location. No movement is written."""
    if location is not None:
        location = location.strip() or None

    def _op():
        item = get_item(item_id, lock=True)
        if item.location != location:
            item.location = location
            item.last_updated = utcnow()
        db.session.commit()
        return item

    return run_with_retry(_op)


def update_min_stock_level(*, item_id: int, min_level: int) -> InventoryItem:
    require_non_negative(min_level, "min_level")

    def _op():
        item = get_item(item_id, lock=True)
        if item.min_stock_level != min_level:
            item.min_stock_level = min_level
            item.last_updated = utcnow()
        db.session.commit()
        return item

    return run_with_retry(_op)


# -- Item lifecycle --


def create_item(*, patch: dict, user_id: int | None = None) -> InventoryItem:
    """
    Create an item from a validated patch.

    Opening stock is recorded as an INITIAL movement so the movement sum
    matches the quantity from the first row on.
    """
    price_cents = patch.get("price_cents") or 0
    cost_cents = patch.get("cost_cents") or 0
    quantity = patch.get("quantity") or 0
    min_level = patch.get("min_stock_level")

    def _op():
        _ensure_unique_sku(patch["sku"])
        _ensure_category(patch.get("category_id"))

        item = InventoryItem(
            sku=patch["sku"],
            name=patch["name"],
            description=patch.get("description"),
            price_cents=price_cents,
            cost_cents=cost_cents,
            margin=calculate_margin(price_cents, cost_cents),
            quantity=0,
            min_stock_level=DEFAULT_MIN_STOCK_LEVEL if min_level is None else min_level,
            location=patch.get("location") or None,
            category_id=patch.get("category_id"),
            last_updated=utcnow(),
        )
        db.session.add(item)
        db.session.flush()

        if quantity > 0:
            _apply_stock_delta(
                item,
                delta=quantity,
                movement_type="INITIAL",
                notes="Initial stock",
                user_id=user_id,
            )

        db.session.commit()
        return item

    return run_with_retry(_op)


def update_item(
    *,
    item_id: int,
    patch: dict,
    change_reason: str | None = None,
    user_id: int | None = None,
) -> tuple[InventoryItem, PriceHistory | None]:
    """
    Apply a validated patch to an item.

    When price or cost changes, margin is recomputed and one PriceHistory
    row is written in the same transaction. Quantity is not writable here.
    """
    if "quantity" in patch:
        raise ValidationError("quantity can only be changed through stock operations")

    def _op():
        item = get_item(item_id, lock=True)

        if "sku" in patch and patch["sku"] != item.sku:
            _ensure_unique_sku(patch["sku"], exclude_item_id=item.id)
        if "category_id" in patch:
            _ensure_category(patch["category_id"])

        old_price, old_cost, old_margin = item.price_cents, item.cost_cents, item.margin
        new_price = patch.get("price_cents", old_price)
        new_cost = patch.get("cost_cents", old_cost)
        if new_price is None or new_cost is None:
            raise ValidationError("price_cents and cost_cents cannot be null")

        for key in ("sku", "name", "description", "min_stock_level", "category_id"):
            if key in patch:
                setattr(item, key, patch[key])
        if "location" in patch:
            item.location = patch["location"] or None

        history = None
        if new_price != old_price or new_cost != old_cost:
            item.price_cents = new_price
            item.cost_cents = new_cost
            item.margin = calculate_margin(new_price, new_cost)
            history = PriceHistory(
                inventory_item_id=item.id,
                old_price_cents=old_price,
                new_price_cents=new_price,
                old_cost_cents=old_cost,
                new_cost_cents=new_cost,
                old_margin=old_margin,
                new_margin=item.margin,
                change_reason=change_reason or "Price update",
                user_id=user_id,
                created_at=utcnow(),
            )
            db.session.add(history)

        item.last_updated = utcnow()
        db.session.commit()
        return item, history

    return run_with_retry(_op)


def delete_item(*, item_id: int) -> dict:
    """
    Delete an item together with its movements and price history.

    Items that appear on a sale stay, since sales must keep their lines.
    Returns a summary of what was removed.
    """
    def _op():
        item = get_item(item_id, lock=True)

        sale_lines = db.session.query(func.count(SaleTransaction.id)).filter(
            SaleTransaction.inventory_item_id == item.id
        ).scalar()
        if sale_lines:
            raise ConflictError(
                f"Inventory item {item.id} appears on {sale_lines} sale line(s) and cannot be deleted",
                details={"inventory_item_id": item.id, "sale_lines": sale_lines},
            )

        summary = {
            "id": item.id,
            "sku": item.sku,
            "name": item.name,
            "quantity": item.quantity,
        }
        summary["movements_deleted"] = (
            db.session.query(StockMovement)
            .filter(StockMovement.inventory_item_id == item.id)
            .delete(synchronize_session=False)
        )
        summary["price_history_deleted"] = (
            db.session.query(PriceHistory)
            .filter(PriceHistory.inventory_item_id == item.id)
            .delete(synchronize_session=False)
        )
        db.session.delete(item)
        db.session.commit()
        return summary

    return run_with_retry(_op)


# -- Reads --


def list_items(
    *,
    category_id: int | None = None,
    search: str | None = None,
    status: str | None = None,
) -> list[InventoryItem]:
    if status is not None and status not in STOCK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(STOCK_STATUSES)}")

    query = db.session.query(InventoryItem)
    if category_id is not None:
        query = query.filter(InventoryItem.category_id == category_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(InventoryItem.name).like(pattern),
                func.lower(InventoryItem.sku).like(pattern),
            )
        )
    if status == "out_of_stock":
        query = query.filter(InventoryItem.quantity <= 0)
    elif status == "low":
        query = query.filter(
            InventoryItem.quantity > 0,
            InventoryItem.quantity <= InventoryItem.min_stock_level,
        )
    elif status == "normal":
        query = query.filter(InventoryItem.quantity > InventoryItem.min_stock_level)

    return query.order_by(InventoryItem.name.asc(), InventoryItem.id.asc()).all()


def list_item_movements(*, item_id: int, limit: int = 200) -> list[StockMovement]:
    get_item(item_id)
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.inventory_item_id == item_id)
        .order_by(StockMovement.date.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def list_price_history(*, item_id: int) -> list[PriceHistory]:
    get_item(item_id)
    return (
        db.session.query(PriceHistory)
        .filter(PriceHistory.inventory_item_id == item_id)
        .order_by(PriceHistory.created_at.desc(), PriceHistory.id.desc())
        .all()
    )


def _filter_by_item(query, *, category_id: int | None, search: str | None):
    """Narrow a query already joined to InventoryItem by category and name/SKU search."""
    if category_id is not None:
        query = query.filter(InventoryItem.category_id == category_id)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(InventoryItem.name).like(pattern),
                func.lower(InventoryItem.sku).like(pattern),
            )
        )
    return query


def _check_range(start_date: datetime | None, end_date: datetime | None) -> None:
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")


def _page_result(query, rows_to_dict, *, page: int, per_page: int, max_per_page: int) -> dict:
    per_page = min(max(per_page or 1, 1), max_per_page)
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": rows_to_dict(rows),
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_stock_movements(
    *,
    movement_type: str | None = None,
    category_id: int | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    per_page: int = 50,
    max_per_page: int = 200,
    sort: str = "desc",
) -> dict:
    """
    Filtered, paginated movement history across all items.

    Date bounds are inclusive. Search matches item name or SKU,
    case-insensitively.
    """
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
    if sort not in ("asc", "desc"):
        raise ValidationError("sort must be 'asc' or 'desc'")
    _check_range(start_date, end_date)

    query = db.session.query(StockMovement).join(
        InventoryItem, StockMovement.inventory_item_id == InventoryItem.id
    )
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    query = _filter_by_item(query, category_id=category_id, search=search)
    if start_date:
        query = query.filter(StockMovement.date >= start_date)
    if end_date:
        query = query.filter(StockMovement.date <= end_date)

    if sort == "asc":
        query = query.order_by(StockMovement.date.asc(), StockMovement.id.asc())
    else:
        query = query.order_by(StockMovement.date.desc(), StockMovement.id.desc())

    return _page_result(
        query,
        lambda rows: [m.to_dict(include_item=True) for m in rows],
        page=page,
        per_page=per_page,
        max_per_page=max_per_page,
    )


PRICE_HISTORY_SORTS = ("date-asc", "date-desc", "product-asc", "product-desc")


def list_price_history_all(
    *,
    category_id: int | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    per_page: int = 50,
    max_per_page: int = 200,
    sort: str = "date-desc",
) -> dict:
    """
    Filtered, paginated price/cost changes across all items.

    sort is one of date-asc, date-desc, product-asc, product-desc; product
    sorts order by item name, newest change first within an item.
    """
    if sort not in PRICE_HISTORY_SORTS:
        raise ValidationError(f"sort must be one of: {', '.join(PRICE_HISTORY_SORTS)}")
    _check_range(start_date, end_date)

    query = db.session.query(PriceHistory).join(
        InventoryItem, PriceHistory.inventory_item_id == InventoryItem.id
    )
    query = _filter_by_item(query, category_id=category_id, search=search)
    if start_date:
        query = query.filter(PriceHistory.created_at >= start_date)
    if end_date:
        query = query.filter(PriceHistory.created_at <= end_date)

    if sort == "date-asc":
        query = query.order_by(PriceHistory.created_at.asc(), PriceHistory.id.asc())
    elif sort == "date-desc":
        query = query.order_by(PriceHistory.created_at.desc(), PriceHistory.id.desc())
    else:
        name_order = InventoryItem.name.asc() if sort == "product-asc" else InventoryItem.name.desc()
        query = query.order_by(name_order, PriceHistory.created_at.desc(), PriceHistory.id.desc())

    return _page_result(
        query,
        lambda rows: [h.to_dict(include_item=True) for h in rows],
        page=page,
        per_page=per_page,
        max_per_page=max_per_page,
    )


def empty_movement_page(*, page: int = 1, per_page: int = 50) -> dict:
    """Shape of list_stock_movements with no rows (used for callers without read access)."""
    return {
        "items": [],
        "count": 0,
        "pagination": {
            "page": max(page or 1, 1),
            "per_page": per_page,
            "total": 0,
            "total_pages": 1,
            "has_next": False,
            "has_prev": False,
        },
    }
