# Overview: Service-layer operations for the channel audit log and the stock movement journal.

from __future__ import annotations

import json
from typing import Any

from ..extensions import db
from ..models import ChannelLog, StockMovement
"""
Audit invariants

- Append-only: no updates or deletes of ChannelLog / StockMovement rows.
- Rows are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no audit trace.
- No business decisions here.
"""

WAREHOUSE_LOCATION = "WAREHOUSE"


def log_channel_action(
    *,
    channel_id: int,
    action: str,
    details: dict[str, Any] | None = None,
    changed_by: str | None = None,
) -> ChannelLog:
    entry = ChannelLog(
        channel_id=channel_id,
        action=action,
        details=json.dumps(details, default=str, sort_keys=True) if details else None,
        changed_by=changed_by,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def record_movement(
    *,
    movement_type: str,
    channel_id: int,
    barcode: str,
    quantity: int,
    from_location: str,
    to_location: str,
    reference: str | None = None,
    note: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        movement_type=movement_type,
        channel_id=channel_id,
        barcode=barcode,
        quantity=quantity,
        from_location=from_location,
        to_location=to_location,
        reference=reference,
        note=note,
    )
    db.session.add(movement)
    return movement


def get_channel_log(channel_id: int, *, limit: int = 200) -> list[ChannelLog]:
    return (
        ChannelLog.query.filter_by(channel_id=channel_id)
        .order_by(ChannelLog.occurred_at.desc(), ChannelLog.id.desc())
        .limit(limit)
        .all()
    )
