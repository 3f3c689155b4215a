# backend/channelstock/services/sales_service.py
"""
POS sales against the channel stock ledger.

SALE STATES:
- active: recorded, ledger debited
- cancelled: ledger debit reversed (terminal, one-way)

CONCURRENCY:
create_sale is the one race-prone operation in the system: several POS
terminals debit the same channel's ledger at once. The whole basket is
checked and debited inside one write transaction (BEGIN IMMEDIATE on SQLite,
row locks elsewhere), together with the Sale rows, so a basket is either
fully recorded or not at all.

The channel row is read FOR SHARE: sales do not block each other, but the
close-out status change (FOR UPDATE) waits for in-flight sales and vice versa.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import SalesChannel, Sale, SaleAdjustment, SaleLine
from ..state_machine import CHANNEL_ACTIVE
from ..time_utils import utcnow
from ..validation import cents, optional_str, positive_int, require_list, required_str
from . import ledger_service
from .audit_service import log_channel_action
from .concurrency import begin_write, lock_for_share, lock_for_update, run_with_retry
from .sequence_service import next_bill_code

logger = logging.getLogger(__name__)

SALE_ACTIVE = "active"
SALE_CANCELLED = "cancelled"


def compute_total(lines: Iterable[dict], adjustments: Iterable[dict], bill_discount_cents: int) -> int:
    """
    total = sum((unit_price - discount) * quantity) + sum(adjustments) - bill_discount

    All amounts are integer cents.
    """
    subtotal = sum((l["unit_price_cents"] - l["discount_cents"]) * l["quantity"] for l in lines)
    adjustment_total = sum(a["amount_cents"] for a in adjustments)
    return subtotal + adjustment_total - bill_discount_cents


def _parse_items(items) -> list[dict]:
    items = require_list(items, "items")
    parsed = []
    for i, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Line {i}: must be an object")
        try:
            line = {
                "barcode": required_str(item.get("barcode"), "barcode", max_length=128),
                "quantity": positive_int(item.get("quantity"), "quantity"),
                "unit_price_cents": cents(item.get("unit_price_cents"), "unit_price_cents"),
                "discount_cents": cents(item.get("discount_cents", 0), "discount_cents"),
            }
        except ValidationError as e:
            raise ValidationError(f"Line {i}: {e.message}", {"line": i, **e.details}) from None
        if line["discount_cents"] > line["unit_price_cents"]:
            raise ValidationError(f"Line {i}: discount_cents cannot exceed unit_price_cents", {"line": i})
        parsed.append(line)
    return parsed


def _parse_adjustments(adjustments) -> list[dict]:
    adjustments = require_list(adjustments, "adjustments", allow_empty=True)
    parsed = []
    for i, adj in enumerate(adjustments, start=1):
        if not isinstance(adj, dict):
            raise ValidationError(f"Adjustment {i}: must be an object")
        parsed.append({
            "description": required_str(adj.get("description"), "description"),
            "amount_cents": cents(adj.get("amount_cents"), "amount_cents", allow_negative=True),
        })
    return parsed


def create_sale(
    channel_id: int,
    items,
    *,
    adjustments=None,
    bill_discount_cents=0,
    actor: str | None = None,
) -> Sale:
    """
    Record a POS bill and debit the ledger for every line, all-or-nothing.

    Raises InsufficientStock (nothing written) when any line exceeds the
    barcode's remaining quantity. Repeated barcodes in one basket are
    checked against remaining as a sum.
    """
    lines = _parse_items(items)
    adjustment_rows = _parse_adjustments(adjustments)
    bill_discount_cents = cents(bill_discount_cents, "bill_discount_cents")

    total = compute_total(lines, adjustment_rows, bill_discount_cents)
    if total < 0:
        raise ValidationError("Sale total cannot be negative", {"total_cents": total})

    def _op():
        begin_write()
        channel = lock_for_share(db.session.query(SalesChannel).filter_by(id=channel_id)).first()
        if not channel:
            raise NotFoundError("SalesChannel", channel_id)
        if channel.status != CHANNEL_ACTIVE:
            raise InvalidTransition("sales_channel", channel_id, "create_sale", {CHANNEL_ACTIVE}, channel.status)

        ledger_service.try_debit(channel_id, [(l["barcode"], l["quantity"]) for l in lines])

        sale = Sale(
            channel_id=channel_id,
            bill_code=next_bill_code(channel.code),
            status=SALE_ACTIVE,
            bill_discount_cents=bill_discount_cents,
            total_cents=total,
            sold_at=utcnow(),
            created_by=actor,
        )
        for n, l in enumerate(lines, start=1):
            sale.lines.append(SaleLine(
                line_number=n,
                line_total_cents=(l["unit_price_cents"] - l["discount_cents"]) * l["quantity"],
                **l,
            ))
        for a in adjustment_rows:
            sale.adjustments.append(SaleAdjustment(**a))
        db.session.add(sale)
        db.session.flush()

        log_channel_action(
            channel_id=channel_id,
            action="sale_recorded",
            details={
                "sale_id": sale.id,
                "bill_code": sale.bill_code,
                "total_cents": total,
                "quantity": sum(l["quantity"] for l in lines),
            },
            changed_by=actor,
        )
        db.session.commit()
        logger.info("Sale %s recorded on channel %s (total=%s cents)", sale.bill_code, channel_id, total)
        return sale

    return run_with_retry(_op)


def cancel_sale(sale_id: int, reason=None, *, actor: str | None = None) -> Sale:
    """
    Cancel a sale and reverse its ledger debits.

    Idempotent: cancelling an already-cancelled sale returns it unchanged.
    Only allowed while the channel is still active (after close-out the
    ledger snapshot is final).
    """
    reason = optional_str(reason, "reason")

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale", sale_id)

        if sale.status == SALE_CANCELLED:
            db.session.rollback()
            logger.info("Sale %s already cancelled; nothing to do", sale_id)
            return sale

        channel = lock_for_share(db.session.query(SalesChannel).filter_by(id=sale.channel_id)).one()
        if channel.status != CHANNEL_ACTIVE:
            raise InvalidTransition("sales_channel", channel.id, "cancel_sale", {CHANNEL_ACTIVE}, channel.status)

        ledger_service.reverse_debit(sale.channel_id, [(line.barcode, line.quantity) for line in sale.lines])

        sale.status = SALE_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by = actor
        sale.cancel_reason = reason
        db.session.flush()

        log_channel_action(
            channel_id=sale.channel_id,
            action="sale_cancelled",
            details={"sale_id": sale.id, "bill_code": sale.bill_code, "reason": reason},
            changed_by=actor,
        )
        db.session.commit()
        logger.info("Sale %s cancelled", sale.bill_code)
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale", sale_id)
    return sale


def list_sales(channel_id: int, *, include_cancelled: bool = False) -> list[Sale]:
    q = db.session.query(Sale).filter(Sale.channel_id == channel_id)
    if not include_cancelled:
        q = q.filter(Sale.status == SALE_ACTIVE)
    return q.order_by(Sale.sold_at.asc(), Sale.id.asc()).all()
