# backend/channelstock/services/stock_request_service.py
"""
Stock request pipeline service.

WHY: Move physical stock from the warehouse into a sales channel with an
approval gate, a SKU-level allocation, packing, shipping and a channel-side
receipt that is the only thing allowed to credit the channel ledger.

LIFECYCLE (state_machine.REQUEST_MACHINE):
1. draft: TOPUP created by the channel, editable
2. submitted: waiting for approval (INITIAL requests start here)
3. approved: warehouse may upload the allocation
4. allocated: Allocation rows exist (packed quantity per barcode)
5. packed: packing confirmed
6. shipped: Shipment recorded
7. received: Receiving recorded, ledger credited with received quantities
8. cancelled: rejected or cancelled before receipt, no ledger effect

Every transition is a status compare-and-set inside one transaction together
with its records and its audit log row.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import InvalidTransition, NotFoundError, QuantityMismatchWarning, ValidationError
from ..events import RequestReceived, request_received
from ..extensions import db
from ..models import Allocation, Receiving, ReceivingLine, SalesChannel, Shipment, StockRequest
from ..state_machine import (
    CHANNEL_ACTIVE,
    CHANNEL_EDITABLE_STATUSES,
    CHANNEL_MACHINE,
    REQUEST_CANCELLED,
    REQUEST_DRAFT,
    REQUEST_MACHINE,
    REQUEST_RECEIVED,
    REQUEST_SUBMITTED,
    REQUEST_TYPE_INITIAL,
    REQUEST_TYPE_TOPUP,
)
from ..time_utils import utcnow
from ..validation import (
    cents,
    non_negative_int,
    optional_str,
    positive_int,
    require_list,
    require_unique,
    required_str,
)
from . import ledger_service
from .audit_service import WAREHOUSE_LOCATION, log_channel_action, record_movement
from .concurrency import begin_write, lock_for_share, lock_for_update, run_with_retry, transition

logger = logging.getLogger(__name__)


@dataclass
class AllocationResult:
    request: StockRequest
    total_packed: int
    warnings: list[QuantityMismatchWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "request": self.request.to_dict(include_lines=True),
            "total_packed": self.total_packed,
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _get_request_locked(request_id: int) -> StockRequest:
    req = lock_for_update(db.session.query(StockRequest).filter_by(id=request_id)).first()
    if not req:
        raise NotFoundError("StockRequest", request_id)
    return req


def _allocation_warning(req: StockRequest, total_packed: int) -> list[QuantityMismatchWarning]:
    if total_packed == req.requested_total_quantity:
        return []
    warning = QuantityMismatchWarning(
        kind="allocation_total",
        barcode=None,
        expected=req.requested_total_quantity,
        actual=total_packed,
        message=(
            f"Allocated total {total_packed} differs from requested total "
            f"{req.requested_total_quantity} for stock request {req.id}"
        ),
    )
    logger.warning(warning.message)
    return [warning]


# ------------------------------------------------------------------------------
# Creation
# ------------------------------------------------------------------------------

def create_initial_request(
    channel: SalesChannel,
    quantity: int,
    *,
    notes: str | None = None,
    actor: str | None = None,
) -> StockRequest:
    """
    Create the channel's single INITIAL request inside the channel-creation unit.

    Starts in `submitted`: the channel creation form is itself the submission,
    so the request lands directly in the approval queue.
    """
    req = StockRequest(
        channel_id=channel.id,
        request_type=REQUEST_TYPE_INITIAL,
        status=REQUEST_SUBMITTED,
        requested_total_quantity=quantity,
        notes=notes,
        created_by=actor,
        submitted_at=utcnow(),
    )
    db.session.add(req)
    db.session.flush()

    log_channel_action(
        channel_id=channel.id,
        action="stock_request_created",
        details={"request_id": req.id, "request_type": REQUEST_TYPE_INITIAL, "requested_total_quantity": quantity},
        changed_by=actor,
    )
    return req


def create_topup_request(
    channel_id: int,
    quantity,
    *,
    notes: str | None = None,
    actor: str | None = None,
) -> StockRequest:
    """Create a TOPUP request (status: draft). The channel must be active."""
    quantity = positive_int(quantity, "requested_total_quantity")
    notes = optional_str(notes, "notes", max_length=2000)

    def _op():
        begin_write()
        channel = db.session.query(SalesChannel).filter_by(id=channel_id).first()
        if not channel:
            raise NotFoundError("SalesChannel", channel_id)
        if channel.status != CHANNEL_ACTIVE:
            raise InvalidTransition("sales_channel", channel_id, "create_topup", {CHANNEL_ACTIVE}, channel.status)

        req = StockRequest(
            channel_id=channel_id,
            request_type=REQUEST_TYPE_TOPUP,
            status=REQUEST_DRAFT,
            requested_total_quantity=quantity,
            notes=notes,
            created_by=actor,
        )
        db.session.add(req)
        db.session.flush()

        log_channel_action(
            channel_id=channel_id,
            action="stock_request_created",
            details={"request_id": req.id, "request_type": REQUEST_TYPE_TOPUP, "requested_total_quantity": quantity},
            changed_by=actor,
        )
        db.session.commit()
        logger.info("Created TOPUP request %s for channel %s (qty=%s)", req.id, channel_id, quantity)
        return req

    return run_with_retry(_op)


# ------------------------------------------------------------------------------
# Approval workflow
# ------------------------------------------------------------------------------

def submit_request(request_id: int, *, actor: str | None = None) -> StockRequest:
    def _op():
        begin_write()
        req = _get_request_locked(request_id)
        if req.requested_total_quantity <= 0:
            raise ValidationError("requested_total_quantity must be greater than 0")

        transition(req, REQUEST_MACHINE, "submit", submitted_at=utcnow())
        log_channel_action(
            channel_id=req.channel_id,
            action="stock_request_submitted",
            details={"request_id": req.id},
            changed_by=actor,
        )
        db.session.commit()
        return req

    return run_with_retry(_op)


def approve_request(request_id: int, *, actor: str | None = None) -> StockRequest:
    """
    Approve a submitted request.

    Approving also approves the parent channel when the channel is still
    draft/submitted, so one click clears both approval queues.
    """
    def _op():
        begin_write()
        req = _get_request_locked(request_id)
        transition(req, REQUEST_MACHINE, "approve", approved_at=utcnow(), approved_by=actor)

        channel = lock_for_update(db.session.query(SalesChannel).filter_by(id=req.channel_id)).one()
        if channel.status in CHANNEL_EDITABLE_STATUSES:
            previous, _ = transition(channel, CHANNEL_MACHINE, "approve")
            log_channel_action(
                channel_id=channel.id,
                action="channel_approved",
                details={"previous_status": previous, "via_request_id": req.id},
                changed_by=actor,
            )

        log_channel_action(
            channel_id=req.channel_id,
            action="stock_request_approved",
            details={"request_id": req.id},
            changed_by=actor,
        )
        db.session.commit()
        return req

    return run_with_retry(_op)


def cancel_request(
    request_id: int,
    *,
    reason: str | None = None,
    actor: str | None = None,
    action: str = "stock_request_cancelled",
) -> StockRequest:
    """Cancel a request from any non-terminal state. No ledger effect."""
    reason = optional_str(reason, "reason", max_length=2000)

    def _op():
        begin_write()
        req = _get_request_locked(request_id)
        _cancel_locked(req, reason=reason, actor=actor, action=action)
        db.session.commit()
        return req

    return run_with_retry(_op)


def reject_request(request_id: int, reason: str | None = None, *, actor: str | None = None) -> StockRequest:
    """Reject = cancel with the rejection reason recorded."""
    return cancel_request(request_id, reason=reason, actor=actor, action="stock_request_rejected")


def _cancel_locked(req: StockRequest, *, reason: str | None, actor: str | None, action: str) -> None:
    previous, _ = transition(
        req,
        REQUEST_MACHINE,
        "cancel",
        cancelled_at=utcnow(),
        cancelled_by=actor,
        rejection_reason=reason,
    )
    log_channel_action(
        channel_id=req.channel_id,
        action=action,
        details={"request_id": req.id, "previous_status": previous, "reason": reason},
        changed_by=actor,
    )


def cancel_open_requests_locked(channel_id: int, *, actor: str | None, reason: str) -> list[StockRequest]:
    """Cancel every non-terminal request of a channel (used when the channel is cancelled)."""
    open_requests = (
        lock_for_update(
            db.session.query(StockRequest).filter(
                StockRequest.channel_id == channel_id,
                StockRequest.status.notin_([REQUEST_RECEIVED, REQUEST_CANCELLED]),
            )
        )
        .order_by(StockRequest.id)
        .all()
    )
    for req in open_requests:
        _cancel_locked(req, reason=reason, actor=actor, action="stock_request_cancelled")
    return open_requests


# ------------------------------------------------------------------------------
# Warehouse: allocation, packing, shipping
# ------------------------------------------------------------------------------

def _parse_allocation_rows(rows) -> list[dict]:
    rows = require_list(rows, "rows")
    parsed = []
    for i, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise ValidationError(f"Row {i}: must be an object")
        try:
            price = row.get("unit_price_cents")
            parsed.append({
                "barcode": required_str(row.get("barcode"), "barcode", max_length=128),
                "size": optional_str(row.get("size"), "size", max_length=32),
                "packed_quantity": non_negative_int(row.get("packed_quantity"), "packed_quantity"),
                "unit_price_cents": cents(price, "unit_price_cents") if price is not None else None,
            })
        except ValidationError as e:
            raise ValidationError(f"Row {i}: {e.message}", {"row": i, **e.details}) from None
    require_unique((r["barcode"] for r in parsed), "barcode")
    return parsed


def upload_allocation(request_id: int, rows, *, actor: str | None = None) -> AllocationResult:
    """
    Persist the SKU-level allocation for an approved request (approved -> allocated).

    The whole batch is validated first; one bad row rejects everything.
    A total that differs from requested_total_quantity is a warning, not an error.
    """
    parsed = _parse_allocation_rows(rows)

    def _op():
        begin_write()
        req = _get_request_locked(request_id)
        transition(req, REQUEST_MACHINE, "upload_allocation")

        for row in parsed:
            db.session.add(Allocation(request_id=req.id, **row))
        db.session.flush()
        db.session.refresh(req)

        total_packed = sum(r["packed_quantity"] for r in parsed)
        warnings = _allocation_warning(req, total_packed)

        log_channel_action(
            channel_id=req.channel_id,
            action="allocation_uploaded",
            details={
                "request_id": req.id,
                "total_items": len(parsed),
                "total_packed": total_packed,
                "requested_total_quantity": req.requested_total_quantity,
            },
            changed_by=actor,
        )
        db.session.commit()
        return AllocationResult(request=req, total_packed=total_packed, warnings=warnings)

    return run_with_retry(_op)


def adjust_allocation(allocation_id: int, packed_quantity, *, actor: str | None = None) -> AllocationResult:
    """Correct one allocation's packed quantity while its request is still `allocated`."""
    packed_quantity = non_negative_int(packed_quantity, "packed_quantity")

    def _op():
        begin_write()
        allocation = db.session.query(Allocation).filter_by(id=allocation_id).first()
        if not allocation:
            raise NotFoundError("Allocation", allocation_id)

        req = _get_request_locked(allocation.request_id)
        # Same-state edit: allowed exactly where packing is allowed
        if not REQUEST_MACHINE.can(req.status, "pack"):
            raise InvalidTransition(
                "stock_request", req.id, "adjust_allocation", REQUEST_MACHINE.sources_for("pack"), req.status
            )

        previous = allocation.packed_quantity
        allocation.packed_quantity = packed_quantity
        db.session.flush()

        total_packed = req.total_packed()
        warnings = _allocation_warning(req, total_packed)

        log_channel_action(
            channel_id=req.channel_id,
            action="allocation_adjusted",
            details={
                "request_id": req.id,
                "barcode": allocation.barcode,
                "previous_quantity": previous,
                "packed_quantity": packed_quantity,
            },
            changed_by=actor,
        )
        db.session.commit()
        return AllocationResult(request=req, total_packed=total_packed, warnings=warnings)

    return run_with_retry(_op)


def confirm_packing(request_id: int, *, actor: str | None = None) -> StockRequest:
    def _op():
        begin_write()
        req = _get_request_locked(request_id)
        transition(req, REQUEST_MACHINE, "pack")
        log_channel_action(
            channel_id=req.channel_id,
            action="packing_confirmed",
            details={"request_id": req.id, "total_packed": req.total_packed()},
            changed_by=actor,
        )
        db.session.commit()
        return req

    return run_with_retry(_op)


def create_shipment(
    request_id: int,
    provider,
    tracking_number,
    *,
    actor: str | None = None,
) -> Shipment:
    """Record the outbound shipment (packed -> shipped)."""
    provider = required_str(provider, "provider", max_length=128)
    tracking_number = required_str(tracking_number, "tracking_number", max_length=128)

    def _op():
        begin_write()
        req = _get_request_locked(request_id)
        transition(req, REQUEST_MACHINE, "ship")

        shipment = Shipment(
            request_id=req.id,
            provider=provider,
            tracking_number=tracking_number,
            packed_total_qty=req.total_packed(),
            shipped_at=utcnow(),
            shipped_by=actor,
        )
        db.session.add(shipment)
        db.session.flush()

        log_channel_action(
            channel_id=req.channel_id,
            action="shipment_created",
            details={
                "request_id": req.id,
                "provider": provider,
                "tracking_number": tracking_number,
                "total_packed": shipment.packed_total_qty,
            },
            changed_by=actor,
        )
        db.session.commit()
        return shipment

    return run_with_retry(_op)


# ------------------------------------------------------------------------------
# Channel: receiving (the only ledger credit)
# ------------------------------------------------------------------------------

def _parse_receiving_items(items) -> list[dict]:
    items = require_list(items, "items")
    parsed = []
    for i, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {i}: must be an object")
        try:
            allocated = item.get("allocated_qty")
            parsed.append({
                "barcode": required_str(item.get("barcode"), "barcode", max_length=128),
                "allocated_qty": non_negative_int(allocated, "allocated_qty") if allocated is not None else None,
                "received_qty": non_negative_int(item.get("received_qty"), "received_qty"),
                "remarks": optional_str(item.get("remarks"), "remarks"),
            })
        except ValidationError as e:
            raise ValidationError(f"Item {i}: {e.message}", {"item": i, **e.details}) from None
    require_unique((p["barcode"] for p in parsed), "barcode")
    return parsed


def confirm_receiving(
    request_id: int,
    items,
    *,
    notes: str | None = None,
    actor: str | None = None,
) -> Receiving:
    """
    Record the channel-side receipt (shipped -> received) and credit the ledger.

    received_qty is ground truth: the ledger is credited with it, and any
    difference from allocated_qty is stored on the line, not corrected.
    allocated_qty defaults to the allocation's packed quantity when omitted.

    Publishes RequestReceived inside the transaction; the channel lifecycle
    uses it to activate a channel whose INITIAL request just arrived.
    """
    parsed = _parse_receiving_items(items)
    notes = optional_str(notes, "notes", max_length=2000)

    def _op():
        begin_write()
        req = _get_request_locked(request_id)
        # shared lock: an in-flight close-out finishes before the status is read
        channel = lock_for_share(db.session.query(SalesChannel).filter_by(id=req.channel_id)).one()

        # TOPUP stock may only land while the channel is selling; after close-out the
        # ledger snapshot is final.
        if req.request_type == REQUEST_TYPE_TOPUP and REQUEST_MACHINE.can(req.status, "receive"):
            if channel.status != CHANNEL_ACTIVE:
                raise InvalidTransition(
                    "sales_channel", channel.id, "receive_topup", {CHANNEL_ACTIVE}, channel.status
                )

        transition(req, REQUEST_MACHINE, "receive")

        packed = {a.barcode: a.packed_quantity for a in req.allocations}
        received_total = sum(p["received_qty"] for p in parsed)
        receiving = Receiving(
            request_id=req.id,
            received_total_qty=received_total,
            notes=notes,
            received_at=utcnow(),
            received_by=actor,
        )
        db.session.add(receiving)

        differences = []
        for p in parsed:
            allocated = p["allocated_qty"] if p["allocated_qty"] is not None else packed.get(p["barcode"], 0)
            line = ReceivingLine(
                barcode=p["barcode"],
                allocated_qty=allocated,
                received_qty=p["received_qty"],
                difference_qty=allocated - p["received_qty"],
                remarks=p["remarks"],
            )
            receiving.lines.append(line)
            if line.difference_qty:
                differences.append({
                    "barcode": line.barcode,
                    "allocated": allocated,
                    "received": line.received_qty,
                    "diff": line.difference_qty,
                })

            if p["received_qty"] <= 0:
                continue

            ledger_service.credit(req.channel_id, p["barcode"], p["received_qty"])
            record_movement(
                movement_type="RECEIVING",
                channel_id=req.channel_id,
                barcode=p["barcode"],
                quantity=p["received_qty"],
                from_location=WAREHOUSE_LOCATION,
                to_location=channel.name,
                reference=f"stock_request:{req.id}",
                note=f"Received from {req.request_type} request",
            )

        db.session.flush()

        log_channel_action(
            channel_id=req.channel_id,
            action="stock_received",
            details={
                "request_id": req.id,
                "received_total": received_total,
                "item_count": len(parsed),
                "differences": differences,
            },
            changed_by=actor,
        )

        request_received.send(
            RequestReceived(
                request_id=req.id,
                channel_id=req.channel_id,
                request_type=req.request_type,
                received_total=received_total,
                actor=actor,
            )
        )

        db.session.commit()
        if differences:
            logger.warning("Stock request %s received with %d discrepancies", req.id, len(differences))
        return receiving

    return run_with_retry(_op)


# ------------------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------------------

def get_request(request_id: int) -> StockRequest:
    req = db.session.get(StockRequest, request_id)
    if not req:
        raise NotFoundError("StockRequest", request_id)
    return req


def list_requests(
    *,
    status: str | list[str] | None = None,
    channel_id: int | None = None,
    limit: int = 200,
) -> list[StockRequest]:
    """Warehouse queues: oldest first, optionally filtered by status(es) and channel."""
    q = db.session.query(StockRequest)
    if status:
        statuses = [status] if isinstance(status, str) else list(status)
        unknown = set(statuses) - REQUEST_MACHINE.states
        if unknown:
            raise ValidationError(f"Unknown status: {', '.join(sorted(unknown))}")
        q = q.filter(StockRequest.status.in_(statuses))
    if channel_id is not None:
        q = q.filter(StockRequest.channel_id == channel_id)
    return q.order_by(StockRequest.created_at.asc(), StockRequest.id.asc()).limit(limit).all()


def update_initial_quantity_locked(channel_id: int, quantity: int, *, actor: str | None) -> StockRequest:
    """Change the INITIAL request's quantity while it has not been allocated yet."""
    req = lock_for_update(
        db.session.query(StockRequest).filter_by(channel_id=channel_id, request_type=REQUEST_TYPE_INITIAL)
    ).one()
    editable = REQUEST_MACHINE.sources_for("upload_allocation") | {REQUEST_DRAFT, REQUEST_SUBMITTED}
    if req.status not in editable:
        raise InvalidTransition("stock_request", req.id, "update_quantity", editable, req.status)
    req.requested_total_quantity = quantity
    db.session.flush()
    return req
