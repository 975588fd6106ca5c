from __future__ import annotations

from ..extensions import db
from stockroom.time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Sale header.

    STATUS: COMPLETED (initial) -> CANCELLED (terminal).
    Totals are integer cents; tax is recomputed from subtotal and
    tax_rate_bps whenever a refund lowers the subtotal, so
    total_cents == subtotal_cents + tax_cents always holds.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("status IN ('COMPLETED', 'CANCELLED')", name="ck_sales_status"),
        db.CheckConstraint("subtotal_cents >= 0", name="ck_sales_subtotal_non_negative"),
        db.Index("ix_sales_status_date", "status", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)
    notes = db.Column(db.Text, nullable=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transactions = db.relationship(
        "SaleTransaction",
        back_populates="sale",
        order_by="SaleTransaction.id",
        lazy=True,
    )
    refunds = db.relationship("SaleRefund", back_populates="sale", order_by="SaleRefund.id", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = True, refunded: dict[int, int] | None = None) -> dict:
        data = {
            "id": self.id,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "status": self.status,
            "notes": self.notes,
            "date": to_utc_z(self.date),
            "created_by_user_id": self.created_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
        }
        if include_lines:
            refunded = refunded or {}
            data["transactions"] = [
                tx.to_dict(refunded_quantity=refunded.get(tx.id, 0)) for tx in self.transactions
            ]
        return data


class SaleTransaction(db.Model):
    """
    One item line of a sale. Immutable after creation: refunds are tracked
    in SaleRefundLine rather than by editing these rows.
    """
    __tablename__ = "sale_transactions"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_transactions_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="transactions")
    inventory_item = db.relationship("InventoryItem")

    def to_dict(self, refunded_quantity: int = 0) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "inventory_item_id": self.inventory_item_id,
            "item_name": self.inventory_item.name if self.inventory_item else None,
            "sku": self.inventory_item.sku if self.inventory_item else None,
            "quantity": self.quantity,
            "refunded_quantity": refunded_quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class SaleRefund(db.Model):
    """
    Refund header. A sale may be refunded in several steps; each step
    appends one SaleRefund with its lines.
    """
    __tablename__ = "sale_refunds"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    reason = db.Column(db.Text, nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="refunds")
    lines = db.relationship("SaleRefundLine", back_populates="refund", order_by="SaleRefundLine.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "refund_amount_cents": self.refund_amount_cents,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleRefundLine(db.Model):
    __tablename__ = "sale_refund_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_refund_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    refund_id = db.Column(db.Integer, db.ForeignKey("sale_refunds.id"), nullable=False, index=True)
    sale_transaction_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    refund = db.relationship("SaleRefund", back_populates="lines")
    sale_transaction = db.relationship("SaleTransaction")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_transaction_id": self.sale_transaction_id,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
        }
