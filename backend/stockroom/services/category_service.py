# Overview: Service-layer operations for item categories.

from __future__ import annotations

from sqlalchemy import func

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Category, InventoryItem
from .concurrency import run_with_retry


def _item_counts() -> dict[int, int]:
    rows = (
        db.session.query(InventoryItem.category_id, func.count(InventoryItem.id))
        .filter(InventoryItem.category_id.isnot(None))
        .group_by(InventoryItem.category_id)
        .all()
    )
    return {category_id: count for category_id, count in rows}


def list_categories(*, search: str | None = None) -> list[dict]:
    query = db.session.query(Category)
    if search:
        query = query.filter(func.lower(Category.name).like(f"%{search.strip().lower()}%"))
    counts = _item_counts()
    return [
        c.to_dict(item_count=counts.get(c.id, 0))
        for c in query.order_by(Category.name.asc(), Category.id.asc()).all()
    ]


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found", details={"category_id": category_id})
    return category


def _ensure_unique_name(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Category.id).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Category '{name}' already exists", details={"name": name})


def create_category(*, patch: dict) -> Category:
    def _op():
        _ensure_unique_name(patch["name"])
        category = Category(name=patch["name"], description=patch.get("description"))
        db.session.add(category)
        db.session.commit()
        return category

    return run_with_retry(_op)


def update_category(*, category_id: int, patch: dict) -> Category:
    def _op():
        category = get_category(category_id)
        if "name" in patch and patch["name"] != category.name:
            _ensure_unique_name(patch["name"], exclude_id=category.id)
            category.name = patch["name"]
        if "description" in patch:
            category.description = patch["description"]
        db.session.commit()
        return category

    return run_with_retry(_op)


def delete_category(*, category_id: int) -> dict:
    """Delete a category no item references."""
    def _op():
        category = get_category(category_id)
        in_use = (
            db.session.query(func.count(InventoryItem.id))
            .filter(InventoryItem.category_id == category.id)
            .scalar()
        )
        if in_use:
            raise ConflictError(
                f"Category '{category.name}' is used by {in_use} item(s)",
                details={"category_id": category.id, "item_count": in_use},
            )
        summary = {"id": category.id, "name": category.name}
        db.session.delete(category)
        db.session.commit()
        return summary

    return run_with_retry(_op)
