# backend/channelstock/services/closeout_service.py
"""
Close-out reconciliation for EVENT channels.

Splits every barcode's unsold stock into damaged / missing / returned:

    remaining = received - sold          (ledger, read under lock)
    damaged + missing <= remaining       (clamped, never rejected)
    returned  = remaining - damaged - missing

ORDERING:
The channel leaves `active` (CAS active -> pending_return) BEFORE the ledger
rows are read, in the same write transaction. create_sale requires the
channel to be active and reads it under a share lock, so once the status
flips no sale can land between the `remaining` read and the CloseOut write.
If anything fails, the status change rolls back with the entries.

The ledger itself is never modified here; sales stay immutable history.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import NotFoundError, QuantityMismatchWarning, ValidationError
from ..extensions import db
from ..models import CloseOutEntry, SalesChannel
from ..state_machine import CHANNEL_MACHINE, CHANNEL_TYPE_EVENT
from ..validation import non_negative_int, require_list, require_unique, required_str
from . import ledger_service
from .audit_service import log_channel_action
from .concurrency import begin_write, lock_for_update, run_with_retry, transition

logger = logging.getLogger(__name__)


@dataclass
class CloseOutResult:
    channel: SalesChannel
    entries: list[CloseOutEntry]
    warnings: list[QuantityMismatchWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "channel": self.channel.to_dict(),
            "entries": [e.to_dict() for e in self.entries],
            "warnings": [w.to_dict() for w in self.warnings],
            "totals": {
                "remaining": sum(e.remaining for e in self.entries),
                "damaged": sum(e.damaged for e in self.entries),
                "missing": sum(e.missing for e in self.entries),
                "returned": sum(e.returned for e in self.entries),
            },
        }


def clamp(remaining: int, damaged: int, missing: int) -> tuple[int, int]:
    """
    Reduce (damaged, missing) until damaged + missing <= remaining.

    damaged is kept first; missing absorbs the rest. With remaining=20,
    damaged=5, missing=25 the result is (5, 15).
    """
    damaged = min(damaged, remaining)
    missing = min(missing, remaining - damaged)
    return damaged, missing


def _parse_items(items) -> dict[str, tuple[int, int]]:
    items = require_list(items, "items", allow_empty=True)
    parsed = []
    for i, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {i}: must be an object")
        try:
            parsed.append((
                required_str(item.get("barcode"), "barcode", max_length=128),
                non_negative_int(item.get("damaged", 0), "damaged"),
                non_negative_int(item.get("missing", 0), "missing"),
            ))
        except ValidationError as e:
            raise ValidationError(f"Item {i}: {e.message}", {"item": i, **e.details}) from None
    require_unique((barcode for barcode, _, _ in parsed), "barcode")
    return {barcode: (damaged, missing) for barcode, damaged, missing in parsed}


def close_channel_stock(channel_id: int, items, *, actor: str | None = None) -> CloseOutResult:
    """
    Record the close-out and move the channel active -> pending_return, atomically.

    items: [{barcode, damaged, missing}]. Barcodes held by the ledger but
    missing from items are recorded with damaged = missing = 0. A barcode the
    ledger does not know rejects the whole batch.

    Over-large damaged/missing values are clamped; each clamp comes back as
    a "closeout_clamped" QuantityMismatchWarning.
    """
    requested = _parse_items(items)

    def _op():
        begin_write()
        channel = lock_for_update(db.session.query(SalesChannel).filter_by(id=channel_id)).first()
        if not channel:
            raise NotFoundError("SalesChannel", channel_id)
        if channel.type != CHANNEL_TYPE_EVENT:
            raise ValidationError("Close-out is only available for EVENT channels", {"type": channel.type})

        # Stop sales first; everything below reads a ledger that can no longer move
        transition(channel, CHANNEL_MACHINE, "close_stock")

        rows = ledger_service.lock_channel_rows(channel.id)
        known = {row.barcode for row in rows}
        unknown = sorted(set(requested) - known)
        if unknown:
            raise ValidationError(
                f"Barcodes not held by channel {channel.id}: {', '.join(unknown)}",
                {"barcodes": unknown},
            )

        entries, warnings = [], []
        for row in rows:
            want_damaged, want_missing = requested.get(row.barcode, (0, 0))
            damaged, missing = clamp(row.remaining, want_damaged, want_missing)
            clamped = (damaged, missing) != (want_damaged, want_missing)

            if clamped:
                warning = QuantityMismatchWarning(
                    kind="closeout_clamped",
                    barcode=row.barcode,
                    expected=want_damaged + want_missing,
                    actual=damaged + missing,
                    message=(
                        f"{row.barcode}: damaged {want_damaged} + missing {want_missing} exceeds "
                        f"remaining {row.remaining}; recorded damaged {damaged}, missing {missing}"
                    ),
                )
                logger.warning(warning.message)
                warnings.append(warning)

            entry = CloseOutEntry(
                channel_id=channel.id,
                barcode=row.barcode,
                sold=row.sold,
                remaining=row.remaining,
                damaged=damaged,
                missing=missing,
                clamped=clamped,
                created_by=actor,
            )
            db.session.add(entry)
            entries.append(entry)

        db.session.flush()

        log_channel_action(
            channel_id=channel.id,
            action="close_stock_submitted",
            details={
                "barcodes": len(entries),
                "damaged": sum(e.damaged for e in entries),
                "missing": sum(e.missing for e in entries),
                "returned": sum(e.returned for e in entries),
                "clamped": [w.barcode for w in warnings],
            },
            changed_by=actor,
        )
        db.session.commit()
        return CloseOutResult(channel=channel, entries=entries, warnings=warnings)

    return run_with_retry(_op)


def get_closeout(channel_id: int) -> list[CloseOutEntry]:
    if db.session.get(SalesChannel, channel_id) is None:
        raise NotFoundError("SalesChannel", channel_id)
    return (
        db.session.query(CloseOutEntry)
        .filter_by(channel_id=channel_id)
        .order_by(CloseOutEntry.barcode)
        .all()
    )
