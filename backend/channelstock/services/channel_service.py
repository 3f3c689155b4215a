# backend/channelstock/services/channel_service.py
"""
Sales channel lifecycle service.

WHY: A channel is the unit everything else hangs off: its INITIAL request
feeds stock in, its ledger is what POS sells from, and its close-out and
return settle what was left. This module owns every channel status change.

LIFECYCLE (state_machine.CHANNEL_MACHINE):
    draft -> submitted -> approved -> active -> pending_return -> returning
          -> returned -> completed
    {active, returned, completed} -> pending_payment -> payment_approved
    {draft, submitted, approved} -> cancelled

ACTIVATION:
approved -> active happens when the channel's INITIAL request is received.
confirm_receiving publishes RequestReceived; on_request_received (connected
by register_event_handlers) activates the channel inside the same
transaction. activate_channel() is the same hook callable directly, guarded
by the INITIAL request actually being received.

close_stock (active -> pending_return) lives in closeout_service.
"""
from __future__ import annotations

import logging
from datetime import date

from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..events import RequestReceived, request_received
from ..extensions import db
from ..models import ChannelStaff, CloseOutEntry, ReturnShipment, SalesChannel, StockRequest
from ..state_machine import (
    CHANNEL_DRAFT,
    CHANNEL_EDITABLE_STATUSES,
    CHANNEL_MACHINE,
    CHANNEL_TYPE_EVENT,
    CHANNEL_TYPES,
    REQUEST_RECEIVED,
    REQUEST_TYPE_INITIAL,
)
from ..time_utils import parse_iso_date, utcnow
from ..validation import cents, optional_str, positive_int, required_str
from . import stock_request_service
from .audit_service import WAREHOUSE_LOCATION, log_channel_action, record_movement
from .concurrency import begin_write, lock_for_update, run_with_retry, transition
from .sequence_service import next_channel_code

logger = logging.getLogger(__name__)

_DETAIL_FIELDS = ("name", "location", "start_date", "end_date", "sales_target_cents", "responsible_person_name", "phone")


# ------------------------------------------------------------------------------
# Input parsing
# ------------------------------------------------------------------------------

def _parse_date(value, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)") from None


def _parse_staff(staff) -> list[dict]:
    if staff is None:
        return []
    if not isinstance(staff, (list, tuple)):
        raise ValidationError("staff must be a list")

    parsed = []
    seen = set()
    for i, entry in enumerate(staff, start=1):
        if isinstance(entry, str):
            entry = {"staff_id": entry}
        if not isinstance(entry, dict):
            raise ValidationError(f"Staff {i}: must be an object")
        staff_id = required_str(entry.get("staff_id"), "staff_id", max_length=64)
        if staff_id in seen:
            raise ValidationError(f"Duplicate staff_id: {staff_id}", {"staff_id": staff_id})
        seen.add(staff_id)
        parsed.append({"staff_id": staff_id, "is_main": bool(entry.get("is_main", False))})

    if sum(1 for s in parsed if s["is_main"]) > 1:
        raise ValidationError("At most one staff member can be marked as main")
    return parsed


def _validate_dates(channel_type: str, start: date | None, end: date | None) -> None:
    if channel_type == CHANNEL_TYPE_EVENT:
        if start is None or end is None:
            raise ValidationError("start_date and end_date are required for EVENT channels")
        if start > end:
            raise ValidationError("start_date must be on or before end_date")
    elif start is not None or end is not None:
        raise ValidationError("BRANCH channels do not have start/end dates")


def _parse_details(data: dict) -> dict:
    """Parse the detail fields present in data. Missing keys are left out."""
    out = {}
    if "name" in data:
        out["name"] = required_str(data.get("name"), "name")
    if "location" in data:
        out["location"] = optional_str(data.get("location"), "location")
    if "start_date" in data:
        out["start_date"] = _parse_date(data.get("start_date"), "start_date")
    if "end_date" in data:
        out["end_date"] = _parse_date(data.get("end_date"), "end_date")
    if "sales_target_cents" in data:
        target = data.get("sales_target_cents")
        out["sales_target_cents"] = cents(target, "sales_target_cents") if target is not None else None
    if "responsible_person_name" in data:
        out["responsible_person_name"] = optional_str(data.get("responsible_person_name"), "responsible_person_name")
    if "phone" in data:
        out["phone"] = optional_str(data.get("phone"), "phone", max_length=64)
    return out


def _get_channel_locked(channel_id: int) -> SalesChannel:
    channel = lock_for_update(db.session.query(SalesChannel).filter_by(id=channel_id)).first()
    if not channel:
        raise NotFoundError("SalesChannel", channel_id)
    return channel


# ------------------------------------------------------------------------------
# Creation and editing
# ------------------------------------------------------------------------------

def create_channel(
    channel_type,
    name,
    *,
    initial_quantity,
    location=None,
    start_date=None,
    end_date=None,
    sales_target_cents=None,
    responsible_person_name=None,
    phone=None,
    staff=None,
    notes=None,
    actor: str | None = None,
) -> SalesChannel:
    """
    Create a channel (status: draft) together with its INITIAL stock request.

    Both rows, the staff assignments, the generated code and the audit rows
    commit as one unit; a failure leaves nothing behind.
    """
    if channel_type not in CHANNEL_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(CHANNEL_TYPES))}")

    details = _parse_details({
        "name": name,
        "location": location,
        "start_date": start_date,
        "end_date": end_date,
        "sales_target_cents": sales_target_cents,
        "responsible_person_name": responsible_person_name,
        "phone": phone,
    })
    _validate_dates(channel_type, details["start_date"], details["end_date"])
    staff_rows = _parse_staff(staff)
    initial_quantity = positive_int(initial_quantity, "initial_quantity")
    notes = optional_str(notes, "notes", max_length=2000)

    def _op():
        begin_write()
        channel = SalesChannel(
            code=next_channel_code(channel_type),
            type=channel_type,
            status=CHANNEL_DRAFT,
            created_by=actor,
            **details,
        )
        for s in staff_rows:
            channel.staff.append(ChannelStaff(**s))
        db.session.add(channel)
        db.session.flush()

        log_channel_action(
            channel_id=channel.id,
            action="channel_created",
            details={"code": channel.code, "type": channel_type, "initial_quantity": initial_quantity},
            changed_by=actor,
        )
        stock_request_service.create_initial_request(channel, initial_quantity, notes=notes, actor=actor)

        db.session.commit()
        logger.info("Created channel %s (%s) id=%s", channel.code, channel_type, channel.id)
        return channel

    return run_with_retry(_op)


def update_channel(
    channel_id: int,
    data: dict,
    *,
    actor: str | None = None,
) -> SalesChannel:
    """
    Edit details, staff and the INITIAL quantity while the channel is draft/submitted.

    data may hold any detail field, "staff" (replaces all assignments) and
    "initial_quantity". Keys that are absent are left unchanged.
    """
    if not isinstance(data, dict):
        raise ValidationError("Body must be an object")
    details = _parse_details(data)
    staff_rows = _parse_staff(data["staff"]) if "staff" in data else None
    quantity = positive_int(data["initial_quantity"], "initial_quantity") if "initial_quantity" in data else None

    def _op():
        begin_write()
        channel = _get_channel_locked(channel_id)
        if channel.status not in CHANNEL_EDITABLE_STATUSES:
            raise InvalidTransition("sales_channel", channel.id, "update", CHANNEL_EDITABLE_STATUSES, channel.status)

        start = details.get("start_date", channel.start_date)
        end = details.get("end_date", channel.end_date)
        _validate_dates(channel.type, start, end)

        changed = {}
        for key in _DETAIL_FIELDS:
            if key in details and getattr(channel, key) != details[key]:
                changed[key] = details[key]
                setattr(channel, key, details[key])

        if staff_rows is not None:
            channel.staff.clear()
            db.session.flush()
            for s in staff_rows:
                channel.staff.append(ChannelStaff(**s))
            changed["staff"] = [s["staff_id"] for s in staff_rows]

        if quantity is not None:
            req = stock_request_service.update_initial_quantity_locked(channel.id, quantity, actor=actor)
            changed["initial_quantity"] = req.requested_total_quantity

        db.session.flush()
        log_channel_action(channel_id=channel.id, action="channel_updated", details=changed, changed_by=actor)
        db.session.commit()
        return channel

    return run_with_retry(_op)


# ------------------------------------------------------------------------------
# Status transitions
# ------------------------------------------------------------------------------

def _simple_transition(channel_id: int, event: str, action: str, *, actor: str | None, details: dict | None = None):
    """Lock, CAS-transition, log, commit. For events with no side records."""
    def _op():
        begin_write()
        channel = _get_channel_locked(channel_id)
        previous, new = transition(channel, CHANNEL_MACHINE, event)
        log_channel_action(
            channel_id=channel.id,
            action=action,
            details={"previous_status": previous, "new_status": new, **(details or {})},
            changed_by=actor,
        )
        db.session.commit()
        return channel

    return run_with_retry(_op)


def submit_channel(channel_id: int, *, actor: str | None = None) -> SalesChannel:
    return _simple_transition(channel_id, "submit", "channel_submitted", actor=actor)


def approve_channel(channel_id: int, *, actor: str | None = None) -> SalesChannel:
    return _simple_transition(channel_id, "approve", "channel_approved", actor=actor)


def cancel_channel(channel_id: int, reason: str | None = None, *, actor: str | None = None) -> SalesChannel:
    """Cancel a pre-active channel and every open stock request it owns."""
    reason = optional_str(reason, "reason", max_length=2000)

    def _op():
        begin_write()
        channel = _get_channel_locked(channel_id)
        previous, _ = transition(channel, CHANNEL_MACHINE, "cancel")
        cancelled = stock_request_service.cancel_open_requests_locked(
            channel.id, actor=actor, reason=reason or "Channel cancelled"
        )
        log_channel_action(
            channel_id=channel.id,
            action="channel_cancelled",
            details={
                "previous_status": previous,
                "reason": reason,
                "cancelled_request_ids": [r.id for r in cancelled],
            },
            changed_by=actor,
        )
        db.session.commit()
        return channel

    return run_with_retry(_op)


def _activate_locked(channel: SalesChannel, *, actor: str | None, trigger: dict) -> None:
    transition(channel, CHANNEL_MACHINE, "activate")
    log_channel_action(channel_id=channel.id, action="channel_activated", details=trigger, changed_by=actor)


def activate_channel(channel_id: int, *, actor: str | None = None) -> SalesChannel:
    """
    approved -> active, once the INITIAL request has been received.

    Normally reached through on_request_received; callable directly for
    channels whose receipt predates the event wiring.
    """
    def _op():
        begin_write()
        channel = _get_channel_locked(channel_id)
        initial = db.session.query(StockRequest).filter_by(
            channel_id=channel.id, request_type=REQUEST_TYPE_INITIAL
        ).first()
        if initial is None or initial.status != REQUEST_RECEIVED:
            raise ValidationError(
                "Channel can only be activated after its INITIAL stock request is received",
                {"channel_id": channel.id, "initial_request_status": initial.status if initial else None},
            )
        _activate_locked(channel, actor=actor, trigger={"initial_request_id": initial.id, "trigger": "manual"})
        db.session.commit()
        return channel

    return run_with_retry(_op)


def on_request_received(event: RequestReceived, **_kwargs) -> None:
    """
    RequestReceived subscriber: activate the channel on its INITIAL receipt.

    Runs inside confirm_receiving's transaction; never commits.
    """
    if event.request_type != REQUEST_TYPE_INITIAL:
        return

    channel = _get_channel_locked(event.channel_id)
    if not CHANNEL_MACHINE.can(channel.status, "activate"):
        logger.info(
            "INITIAL request %s received but channel %s is '%s'; not activating",
            event.request_id, channel.id, channel.status,
        )
        return

    _activate_locked(
        channel,
        actor=event.actor,
        trigger={"initial_request_id": event.request_id, "received_total": event.received_total, "trigger": "request_received"},
    )


def register_event_handlers() -> None:
    request_received.connect(on_request_received)


# ------------------------------------------------------------------------------
# Return flow (after close-out)
# ------------------------------------------------------------------------------

def create_return_shipment(
    channel_id: int,
    provider,
    tracking_number=None,
    *,
    actor: str | None = None,
) -> ReturnShipment:
    """pending_return -> returning, recording the carrier. No quantity change."""
    provider = required_str(provider, "provider", max_length=128)
    tracking_number = optional_str(tracking_number, "tracking_number", max_length=128)

    def _op():
        begin_write()
        channel = _get_channel_locked(channel_id)
        transition(channel, CHANNEL_MACHINE, "ship_return")

        shipment = ReturnShipment(
            channel_id=channel.id,
            provider=provider,
            tracking_number=tracking_number,
            shipped_at=utcnow(),
            shipped_by=actor,
        )
        db.session.add(shipment)
        db.session.flush()

        log_channel_action(
            channel_id=channel.id,
            action="return_shipment_created",
            details={"provider": provider, "tracking_number": tracking_number},
            changed_by=actor,
        )
        db.session.commit()
        return shipment

    return run_with_retry(_op)


def confirm_return_received(channel_id: int, *, actor: str | None = None) -> SalesChannel:
    """
    returning -> returned: the warehouse has the returned stock.

    Stamps the close-out entries as confirmed and journals one RETURN
    movement per barcode with returned > 0. The ledger is not touched.
    """
    def _op():
        begin_write()
        channel = _get_channel_locked(channel_id)
        transition(channel, CHANNEL_MACHINE, "confirm_return")

        now = utcnow()
        entries = (
            db.session.query(CloseOutEntry)
            .filter_by(channel_id=channel.id)
            .order_by(CloseOutEntry.barcode)
            .all()
        )
        returned_total = 0
        for entry in entries:
            entry.confirmed_at = now
            entry.confirmed_by = actor
            if entry.returned <= 0:
                continue
            returned_total += entry.returned
            record_movement(
                movement_type="RETURN",
                channel_id=channel.id,
                barcode=entry.barcode,
                quantity=entry.returned,
                from_location=channel.name,
                to_location=WAREHOUSE_LOCATION,
                reference=f"closeout:{channel.id}",
                note="Returned after close-out",
            )

        db.session.flush()
        log_channel_action(
            channel_id=channel.id,
            action="return_confirmed",
            details={"returned_total": returned_total, "barcodes": len(entries)},
            changed_by=actor,
        )
        db.session.commit()
        return channel

    return run_with_retry(_op)


def close_channel_manual(channel_id: int, *, actor: str | None = None) -> SalesChannel:
    """returned -> completed. Independent of the payment sub-flow."""
    return _simple_transition(channel_id, "complete", "channel_closed", actor=actor)


# ------------------------------------------------------------------------------
# Payment sub-flow
# ------------------------------------------------------------------------------

def submit_for_payment_approval(channel_id: int, *, actor: str | None = None) -> SalesChannel:
    return _simple_transition(channel_id, "submit_payment", "payment_submitted", actor=actor)


def approve_payment(channel_id: int, *, actor: str | None = None) -> SalesChannel:
    return _simple_transition(channel_id, "approve_payment", "payment_approved", actor=actor)


# ------------------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------------------

def get_channel(channel_id: int) -> SalesChannel:
    channel = db.session.get(SalesChannel, channel_id)
    if not channel:
        raise NotFoundError("SalesChannel", channel_id)
    return channel


def list_channels(*, status: str | None = None, channel_type: str | None = None) -> list[SalesChannel]:
    q = db.session.query(SalesChannel)
    if status:
        if status not in CHANNEL_MACHINE.states:
            raise ValidationError(f"Unknown status: {status}")
        q = q.filter(SalesChannel.status == status)
    if channel_type:
        if channel_type not in CHANNEL_TYPES:
            raise ValidationError(f"Unknown type: {channel_type}")
        q = q.filter(SalesChannel.type == channel_type)
    return q.order_by(SalesChannel.id.desc()).all()
