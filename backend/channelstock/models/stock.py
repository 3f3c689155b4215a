from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockRequest(db.Model):
    """
    Coarse replenishment ask from a channel to the warehouse.

    LIFECYCLE: see state_machine.REQUEST_MACHINE.
    draft -> submitted -> approved -> allocated -> packed -> shipped -> received,
    cancel from any non-terminal state.

    Exactly one INITIAL request per channel (enforced by the partial unique
    index below); any number of TOPUP requests while the channel is active.
    """
    __tablename__ = "stock_requests"
    __table_args__ = (
        db.Index("ix_stock_requests_status_created", "status", "created_at"),
        db.Index(
            "uq_stock_requests_one_initial",
            "channel_id",
            unique=True,
            sqlite_where=db.text("request_type = 'INITIAL'"),
            postgresql_where=db.text("request_type = 'INITIAL'"),
        ),
        db.CheckConstraint("requested_total_quantity > 0", name="ck_stock_requests_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False, index=True)

    request_type = db.Column(db.String(16), nullable=False)  # INITIAL, TOPUP
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    requested_total_quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    approved_by = db.Column(db.String(128), nullable=True)
    cancelled_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    channel = db.relationship("SalesChannel", backref=db.backref("stock_requests", lazy=True, order_by="StockRequest.id"))

    def total_packed(self) -> int:
        return sum(a.packed_quantity for a in self.allocations)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "channel_id": self.channel_id,
            "request_type": self.request_type,
            "status": self.status,
            "requested_total_quantity": self.requested_total_quantity,
            "notes": self.notes,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "cancelled_by": self.cancelled_by,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "approved_at": to_utc_z(self.approved_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "rejection_reason": self.rejection_reason,
            "total_packed": self.total_packed(),
        }
        if include_lines:
            data["allocations"] = [a.to_dict() for a in self.allocations]
            data["shipment"] = self.shipment.to_dict() if self.shipment else None
            data["receiving"] = self.receiving.to_dict() if self.receiving else None
        return data


class Allocation(db.Model):
    """
    Warehouse SKU-level breakdown of a stock request.

    barcode is an opaque SKU key (externally built as code-color-size).
    """
    __tablename__ = "allocations"
    __table_args__ = (
        db.UniqueConstraint("request_id", "barcode", name="uq_allocations_request_barcode"),
        db.CheckConstraint("packed_quantity >= 0", name="ck_allocations_packed_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("stock_requests.id"), nullable=False, index=True)
    barcode = db.Column(db.String(128), nullable=False)
    size = db.Column(db.String(32), nullable=True)
    packed_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    request = db.relationship(
        "StockRequest",
        backref=db.backref("allocations", lazy=True, order_by="Allocation.id", cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "barcode": self.barcode,
            "size": self.size,
            "packed_quantity": self.packed_quantity,
            "unit_price_cents": self.unit_price_cents,
        }


class Shipment(db.Model):
    """Outbound shipment for a packed request. Written once, on ship."""
    __tablename__ = "shipments"
    __table_args__ = (
        db.UniqueConstraint("request_id", name="uq_shipments_request"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("stock_requests.id"), nullable=False)
    provider = db.Column(db.String(128), nullable=False)
    tracking_number = db.Column(db.String(128), nullable=False)
    packed_total_qty = db.Column(db.Integer, nullable=False)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=False)
    shipped_by = db.Column(db.String(128), nullable=True)

    request = db.relationship("StockRequest", backref=db.backref("shipment", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "provider": self.provider,
            "tracking_number": self.tracking_number,
            "packed_total_qty": self.packed_total_qty,
            "shipped_at": to_utc_z(self.shipped_at),
            "shipped_by": self.shipped_by,
        }


class Receiving(db.Model):
    """
    Channel-side receipt of a shipped request. Written once, on receive.

    received_qty per line is ground truth for the ledger; a difference from
    allocated_qty is recorded, never corrected.
    """
    __tablename__ = "receivings"
    __table_args__ = (
        db.UniqueConstraint("request_id", name="uq_receivings_request"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("stock_requests.id"), nullable=False)
    received_total_qty = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False)
    received_by = db.Column(db.String(128), nullable=True)

    request = db.relationship("StockRequest", backref=db.backref("receiving", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "received_total_qty": self.received_total_qty,
            "notes": self.notes,
            "received_at": to_utc_z(self.received_at),
            "received_by": self.received_by,
            "lines": [line.to_dict() for line in self.lines],
        }


class ReceivingLine(db.Model):
    __tablename__ = "receiving_lines"
    __table_args__ = (
        db.UniqueConstraint("receiving_id", "barcode", name="uq_receiving_lines_receiving_barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receiving_id = db.Column(db.Integer, db.ForeignKey("receivings.id"), nullable=False, index=True)
    barcode = db.Column(db.String(128), nullable=False)
    allocated_qty = db.Column(db.Integer, nullable=False)
    received_qty = db.Column(db.Integer, nullable=False)
    # allocated - received; positive means short delivery
    difference_qty = db.Column(db.Integer, nullable=False)
    remarks = db.Column(db.String(255), nullable=True)

    receiving = db.relationship(
        "Receiving",
        backref=db.backref("lines", lazy=True, order_by="ReceivingLine.id", cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "barcode": self.barcode,
            "allocated_qty": self.allocated_qty,
            "received_qty": self.received_qty,
            "difference_qty": self.difference_qty,
            "remarks": self.remarks,
        }


class ChannelStock(db.Model):
    """
    Per-channel, per-barcode stock ledger entry.

    INVARIANT: 0 <= sold <= received at all times.
    - received only grows, and only through receiving.
    - sold moves only through sale creation and sale cancellation.

    version_id gives optimistic locking on top of the row lock taken by
    ledger_service, so a lost update surfaces as StaleDataError.
    """
    __tablename__ = "channel_stock"
    __table_args__ = (
        db.UniqueConstraint("channel_id", "barcode", name="uq_channel_stock_channel_barcode"),
        db.CheckConstraint("sold >= 0", name="ck_channel_stock_sold_non_negative"),
        db.CheckConstraint("sold <= received", name="ck_channel_stock_sold_le_received"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False, index=True)
    barcode = db.Column(db.String(128), nullable=False)
    received = db.Column(db.Integer, nullable=False, default=0)
    sold = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining(self) -> int:
        return self.received - self.sold

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "barcode": self.barcode,
            "received": self.received,
            "sold": self.sold,
            "remaining": self.remaining,
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """Append-only journal of physical stock moving between warehouse and channel."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_channel_barcode", "channel_id", "barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_type = db.Column(db.String(16), nullable=False, index=True)  # RECEIVING, RETURN
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False, index=True)
    barcode = db.Column(db.String(128), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    from_location = db.Column(db.String(255), nullable=False)
    to_location = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "channel_id": self.channel_id,
            "barcode": self.barcode,
            "quantity": self.quantity,
            "from_location": self.from_location,
            "to_location": self.to_location,
            "reference": self.reference,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class CloseOutEntry(db.Model):
    """
    Close-out disposition of one barcode's unsold stock.

    Written once, in the same transaction that moves the channel from
    active to pending_return. remaining is the ledger snapshot at that
    instant; damaged + missing <= remaining, so returned >= 0.
    """
    __tablename__ = "closeout_entries"
    __table_args__ = (
        db.UniqueConstraint("channel_id", "barcode", name="uq_closeout_entries_channel_barcode"),
        db.CheckConstraint("damaged >= 0 AND missing >= 0", name="ck_closeout_non_negative"),
        db.CheckConstraint("damaged + missing <= remaining", name="ck_closeout_conservation"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False, index=True)
    barcode = db.Column(db.String(128), nullable=False)

    sold = db.Column(db.Integer, nullable=False)
    remaining = db.Column(db.Integer, nullable=False)
    damaged = db.Column(db.Integer, nullable=False, default=0)
    missing = db.Column(db.Integer, nullable=False, default=0)
    # True when the submitted damaged/missing had to be reduced
    clamped = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.String(128), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.String(128), nullable=True)

    @property
    def returned(self) -> int:
        return self.remaining - self.damaged - self.missing

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "barcode": self.barcode,
            "sold": self.sold,
            "remaining": self.remaining,
            "damaged": self.damaged,
            "missing": self.missing,
            "returned": self.returned,
            "clamped": self.clamped,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by": self.confirmed_by,
        }
