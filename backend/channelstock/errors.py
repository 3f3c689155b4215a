# Overview: Domain error taxonomy shared by services and routes.

"""
Error taxonomy for the channel stock core.

Hard failures are exceptions: the service rolls back and the route maps the
class to an HTTP status. Soft checks (allocation totals, clamped close-out
quantities) never raise; they come back as QuantityMismatchWarning values
next to the successful result.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable


class ChannelStockError(Exception):
    """Base class for every error raised by the channel stock services."""

    code = "channel_stock_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(ChannelStockError, ValueError):
    """400-level input problem. Raised before any state change."""

    code = "validation_error"
    http_status = 400


class NotFoundError(ChannelStockError, LookupError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(ChannelStockError):
    """A state-machine event was attempted from a state that does not allow it."""

    code = "invalid_transition"
    http_status = 409

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        event: str,
        expected: Iterable[str],
        actual: str,
    ):
        expected = sorted(expected)
        super().__init__(
            f"Cannot {event} {entity} {entity_id}: status is '{actual}', "
            f"expected one of: {', '.join(expected) or '(none)'}",
            {
                "entity": entity,
                "id": entity_id,
                "event": event,
                "expected": expected,
                "actual": actual,
            },
        )
        self.entity = entity
        self.entity_id = entity_id
        self.event = event
        self.expected = expected
        self.actual = actual


class InsufficientStock(ChannelStockError):
    code = "insufficient_stock"
    http_status = 409

    def __init__(self, barcode: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {barcode}: requested {requested}, available {available}",
            {"barcode": barcode, "requested": requested, "available": available},
        )
        self.barcode = barcode
        self.requested = requested
        self.available = available


class ConcurrencyConflict(ChannelStockError):
    """
    The row changed between read and write (status CAS miss or stale version).

    Never retried inside the core; the caller re-reads and decides.
    """

    code = "concurrency_conflict"
    http_status = 409

    def __init__(self, entity: str, entity_id: Any, message: str | None = None):
        super().__init__(
            message or f"{entity} {entity_id} was modified concurrently; reload and retry",
            {"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class LedgerInvariantError(ChannelStockError, AssertionError):
    """A ledger mutation would break 0 <= sold <= received. Indicates a bug, not bad input."""

    code = "ledger_invariant_violated"
    http_status = 500


@dataclass(frozen=True)
class QuantityMismatchWarning:
    """
    Non-fatal quantity discrepancy returned to the caller for display.

    kind is "allocation_total" (allocated total differs from the requested
    total; barcode is None) or "closeout_clamped" (damaged + missing exceeded
    remaining and was clamped; expected/actual hold the requested and the
    applied damaged + missing).
    """

    kind: str
    barcode: str | None
    expected: int
    actual: int
    message: str

    def to_dict(self) -> dict:
        return asdict(self)
