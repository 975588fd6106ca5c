from __future__ import annotations

from ..extensions import db
from stockroom.time_utils import to_utc_z, utcnow


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self, item_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if item_count is not None:
            data["item_count"] = item_count
        return data


class InventoryItem(db.Model):
    """
    A stocked item and its current on-hand quantity.

    INVARIANTS:
    - quantity >= 0 and min_stock_level >= 0 (also enforced by CHECK constraints)
    - quantity only changes through the stock ledger, and every change writes
      exactly one StockMovement whose quantity_delta matches it, so the sum of
      an item's movement deltas always equals its quantity
    - margin is derived from price_cents / cost_cents, never set directly

    version_id provides optimistic locking for concurrent stock updates.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
        db.CheckConstraint("min_stock_level >= 0", name="ck_inventory_items_min_level_non_negative"),
        db.Index("ix_inventory_items_category_name", "category_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    margin = db.Column(db.Float, nullable=False, default=0.0)  # percent over cost

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=5)
    location = db.Column(db.String(128), nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    last_updated = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} sku={self.sku!r} quantity={self.quantity}>"

    @property
    def stock_status(self) -> str:
        if self.quantity <= 0:
            return "out_of_stock"
        if self.quantity <= self.min_stock_level:
            return "low"
        return "normal"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "margin": self.margin,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "stock_status": self.stock_status,
            "location": self.location,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "last_updated": to_utc_z(self.last_updated),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_summary(self) -> dict:
        """Compact form embedded in ledger rows."""
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
        }


class StockMovement(db.Model):
    """
    Append-only record of one change to an item's on-hand quantity.

    quantity_delta is signed: INITIAL/ADD are positive, REMOVE is negative,
    ADJUSTMENT carries (new - old). quantity_after snapshots the resulting
    on-hand figure for audit display.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint(
            "type IN ('INITIAL', 'ADD', 'REMOVE', 'ADJUSTMENT')",
            name="ck_stock_movements_type",
        ),
        db.Index("ix_stock_movements_item_date", "inventory_item_id", "date"),
        db.Index("ix_stock_movements_type_date", "type", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)

    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    inventory_item = db.relationship("InventoryItem", backref=db.backref("movements", lazy="dynamic"))
    user = db.relationship("User")

    def to_dict(self, include_item: bool = False) -> dict:
        data = {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "type": self.type,
            "quantity": abs(self.quantity_delta),
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "notes": self.notes,
            "user_id": self.user_id,
            "date": to_utc_z(self.date),
        }
        if include_item and self.inventory_item is not None:
            data["item"] = self.inventory_item.to_summary()
        return data


class PriceHistory(db.Model):
    """
    One row per price/cost change of an item, written in the same
    transaction as the change. Append-only.
    """
    __tablename__ = "price_history"
    __table_args__ = (
        db.Index("ix_price_history_item_created", "inventory_item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    old_price_cents = db.Column(db.Integer, nullable=False)
    new_price_cents = db.Column(db.Integer, nullable=False)
    old_cost_cents = db.Column(db.Integer, nullable=False)
    new_cost_cents = db.Column(db.Integer, nullable=False)
    old_margin = db.Column(db.Float, nullable=False)
    new_margin = db.Column(db.Float, nullable=False)

    change_reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    inventory_item = db.relationship("InventoryItem", backref=db.backref("price_history", lazy="dynamic"))

    def to_dict(self, include_item: bool = False) -> dict:
        data = {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "old_price_cents": self.old_price_cents,
            "new_price_cents": self.new_price_cents,
            "old_cost_cents": self.old_cost_cents,
            "new_cost_cents": self.new_cost_cents,
            "old_margin": self.old_margin,
            "new_margin": self.new_margin,
            "change_reason": self.change_reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_item and self.inventory_item is not None:
            data["item"] = self.inventory_item.to_summary()
        return data
