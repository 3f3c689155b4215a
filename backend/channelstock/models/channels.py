from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class SalesChannel(db.Model):
    """
    A sales outlet: a temporary EVENT booth or a permanent BRANCH.

    LIFECYCLE: see state_machine.CHANNEL_MACHINE. The status column is only
    ever written through compare-and-set (UPDATE ... WHERE status = expected),
    never by assigning the attribute and flushing.

    DATES: start_date/end_date are required for EVENT (start <= end) and
    absent for BRANCH.
    """
    __tablename__ = "sales_channels"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_sales_channels_code"),
        db.Index("ix_sales_channels_type_status", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Generated: EV-YYYYMM-NNN or BR-NNN
    code = db.Column(db.String(32), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)  # EVENT, BRANCH
    status = db.Column(db.String(24), nullable=False, default="draft", index=True)

    name = db.Column(db.String(255), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    # Authoritative storage in cents
    sales_target_cents = db.Column(db.Integer, nullable=True)

    responsible_person_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<SalesChannel id={self.id} code={self.code!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "status": self.status,
            "name": self.name,
            "location": self.location,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "sales_target_cents": self.sales_target_cents,
            "responsible_person_name": self.responsible_person_name,
            "phone": self.phone,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "staff": [s.to_dict() for s in self.staff],
        }


class ChannelStaff(db.Model):
    """Staff assignment. staff_id is an opaque key owned by the HR directory."""
    __tablename__ = "channel_staff"
    __table_args__ = (
        db.UniqueConstraint("channel_id", "staff_id", name="uq_channel_staff_channel_staff"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False, index=True)
    staff_id = db.Column(db.String(64), nullable=False)
    is_main = db.Column(db.Boolean, nullable=False, default=False)

    channel = db.relationship(
        "SalesChannel",
        backref=db.backref("staff", lazy=True, order_by="ChannelStaff.id", cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {"staff_id": self.staff_id, "is_main": self.is_main}


class ChannelLog(db.Model):
    """
    Append-only audit log of channel activity.

    Rows are written inside the same transaction as the change they record
    and are never updated or deleted.
    """
    __tablename__ = "channel_logs"
    __table_args__ = (
        db.Index("ix_channel_logs_channel_occurred", "channel_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False, index=True)

    # e.g. channel_created, stock_received, sale_cancelled
    action = db.Column(db.String(64), nullable=False, index=True)
    # JSON object, kept small
    details = db.Column(db.Text, nullable=True)
    changed_by = db.Column(db.String(128), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "action": self.action,
            "details": json.loads(self.details) if self.details else None,
            "changed_by": self.changed_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ReturnShipment(db.Model):
    """Shipment carrying a closed EVENT channel's unsold stock back to the warehouse."""
    __tablename__ = "return_shipments"
    __table_args__ = (
        db.UniqueConstraint("channel_id", name="uq_return_shipments_channel"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    channel_id = db.Column(db.Integer, db.ForeignKey("sales_channels.id"), nullable=False)
    provider = db.Column(db.String(128), nullable=False)
    tracking_number = db.Column(db.String(128), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=False)
    shipped_by = db.Column(db.String(128), nullable=True)

    channel = db.relationship("SalesChannel", backref=db.backref("return_shipment", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "provider": self.provider,
            "tracking_number": self.tracking_number,
            "shipped_at": to_utc_z(self.shipped_at),
            "shipped_by": self.shipped_by,
        }


class DocumentSequence(db.Model):
    """
    Atomic sequences for generated codes.

    scope is "channel" for channel codes (keyed by prefix, e.g. "EV-202610-")
    or "sale" for bill numbers (keyed by the channel code).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("scope", "prefix", name="uq_doc_sequences_scope_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(32), nullable=False, index=True)
    prefix = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope": self.scope,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
