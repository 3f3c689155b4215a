from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    POS bill recorded against a sales channel.

    STATUS: active -> cancelled (terminal, one-way, idempotent).
    Creating a sale debits the channel ledger for every line in the same
    transaction; cancelling reverses exactly those debits.

    total_cents = sum((unit_price - discount) * qty) + sum(adjustments) - bill_discount
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("bill_code", name="uq_sales_bill_code"),
        db.Index("ix_sales_channel_status_sold", "channel_id", "status", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False, index=True)

    # Human-readable bill number, e.g. "EV-202610-001-0007"
    bill_code = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    bill_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_by = db.Column(db.String(128), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(128), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    channel = db.relationship("SalesChannel", backref=db.backref("sales", lazy=True))

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "channel_id": self.channel_id,
            "bill_code": self.bill_code,
            "status": self.status,
            "bill_discount_cents": self.bill_discount_cents,
            "total_cents": self.total_cents,
            "sold_at": to_utc_z(self.sold_at),
            "created_by": self.created_by,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["adjustments"] = [adj.to_dict() for adj in self.adjustments]
        return data


class SaleLine(db.Model):
    """Ordered line item on a sale."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_qty_positive"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sale_lines_discount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    barcode = db.Column(db.String(128), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.line_number", cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "barcode": self.barcode,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
        }


class SaleAdjustment(db.Model):
    """Free-form bill adjustment (e.g. a shipping add-on); amount may be negative."""
    __tablename__ = "sale_adjustments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship(
        "Sale",
        backref=db.backref("adjustments", lazy=True, order_by="SaleAdjustment.id", cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {"description": self.description, "amount_cents": self.amount_cents}
