# Overview: Service-layer operations for the per-channel, per-barcode stock ledger.

"""
Channel Stock Ledger

================================================================================
INVARIANTS (authoritative)
================================================================================
- One ChannelStock row per (channel_id, barcode).
- 0 <= sold <= received, always. remaining = received - sold.
- received only grows, and only through credit() (receiving).
- sold moves only through try_debit() (sale creation) and reverse_debit()
  (sale cancellation).

CONCURRENCY:
The mutating functions here never commit. They run inside the caller's unit
of work (begin_write() + run_with_retry()) and lock every row they touch in
barcode order, so two baskets over the same barcodes cannot deadlock and the
read-check-write of a whole basket is one atomic step. Different channels or
different barcodes never share a lock.
================================================================================
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable

from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStock, LedgerInvariantError, ValidationError
from ..extensions import db
from ..models import ChannelStock
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


def _aggregate(items: Iterable[tuple[str, int]]) -> "OrderedDict[str, int]":
    """Sum quantities per barcode, preserving first-seen order."""
    totals: OrderedDict[str, int] = OrderedDict()
    for barcode, qty in items:
        if qty <= 0:
            raise ValidationError(f"Quantity for {barcode} must be greater than 0")
        totals[barcode] = totals.get(barcode, 0) + qty
    return totals


def _lock_rows(channel_id: int, barcodes: Iterable[str]) -> dict[str, ChannelStock]:
    rows = (
        lock_for_update(
            db.session.query(ChannelStock).filter(
                ChannelStock.channel_id == channel_id,
                ChannelStock.barcode.in_(list(barcodes)),
            )
        )
        .order_by(ChannelStock.barcode)
        .all()
    )
    return {row.barcode: row for row in rows}


def credit(channel_id: int, barcode: str, quantity: int) -> ChannelStock:
    """
    received += quantity for (channel_id, barcode), creating the row on first receipt.

    Called only by the receiving step of the stock request pipeline.
    """
    if quantity <= 0:
        raise ValidationError(f"Credit quantity for {barcode} must be greater than 0")

    row = lock_for_update(
        db.session.query(ChannelStock).filter_by(channel_id=channel_id, barcode=barcode)
    ).first()

    if row is None:
        try:
            with db.session.begin_nested():
                row = ChannelStock(channel_id=channel_id, barcode=barcode, received=quantity, sold=0)
                db.session.add(row)
            return row
        except IntegrityError:
            # Created by a concurrent receiving; fall through to the increment
            row = lock_for_update(
                db.session.query(ChannelStock).filter_by(channel_id=channel_id, barcode=barcode)
            ).one()

    row.received = row.received + quantity
    db.session.flush()
    return row


def try_debit(channel_id: int, items: Iterable[tuple[str, int]]) -> list[ChannelStock]:
    """
    All-or-nothing debit of a basket.

    items: (barcode, quantity) pairs; repeated barcodes are summed.
    Every line is checked against remaining before any line is written. If
    one fails, InsufficientStock is raised and no row is modified.
    """
    totals = _aggregate(items)
    if not totals:
        raise ValidationError("Basket must contain at least one item")

    rows = _lock_rows(channel_id, totals.keys())

    for barcode, qty in totals.items():
        row = rows.get(barcode)
        available = row.remaining if row else 0
        if qty > available:
            raise InsufficientStock(barcode=barcode, requested=qty, available=available)

    touched = []
    for barcode, qty in totals.items():
        row = rows[barcode]
        row.sold = row.sold + qty
        touched.append(row)

    # Version check happens here; a lost update raises StaleDataError
    db.session.flush()
    return touched


def reverse_debit(channel_id: int, items: Iterable[tuple[str, int]]) -> list[ChannelStock]:
    """
    sold -= quantity for every line of a cancelled sale.

    A reversal that would drive sold below zero (or hit a missing row) means
    the ledger was already inconsistent; that is a bug, so it raises
    LedgerInvariantError instead of clamping.
    """
    totals = _aggregate(items)
    rows = _lock_rows(channel_id, totals.keys())

    touched = []
    for barcode, qty in totals.items():
        row = rows.get(barcode)
        if row is None or row.sold - qty < 0:
            sold = row.sold if row else None
            logger.error(
                "Ledger reversal would break invariant: channel=%s barcode=%s sold=%s reverse=%s",
                channel_id, barcode, sold, qty,
            )
            raise LedgerInvariantError(
                f"Reversing {qty} of {barcode} would drive sold below zero",
                {"channel_id": channel_id, "barcode": barcode, "sold": sold, "reverse": qty},
            )
        row.sold = row.sold - qty
        touched.append(row)

    db.session.flush()
    return touched


def remaining_of(channel_id: int, barcode: str) -> int:
    row = db.session.query(ChannelStock).filter_by(channel_id=channel_id, barcode=barcode).first()
    return row.remaining if row else 0


def lock_channel_rows(channel_id: int) -> list[ChannelStock]:
    """Lock and return every ledger row of a channel, in barcode order."""
    return (
        lock_for_update(db.session.query(ChannelStock).filter_by(channel_id=channel_id))
        .order_by(ChannelStock.barcode)
        .all()
    )


def get_channel_stock(channel_id: int) -> list[ChannelStock]:
    return (
        db.session.query(ChannelStock)
        .filter_by(channel_id=channel_id)
        .order_by(ChannelStock.barcode)
        .all()
    )


def find_invariant_violations() -> list[ChannelStock]:
    """Rows with sold < 0 or sold > received. Should always be empty."""
    return (
        db.session.query(ChannelStock)
        .filter((ChannelStock.sold < 0) | (ChannelStock.sold > ChannelStock.received))
        .order_by(ChannelStock.channel_id, ChannelStock.barcode)
        .all()
    )
