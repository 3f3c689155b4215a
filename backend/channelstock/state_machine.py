# Overview: Explicit transition tables for stock requests and sales channels.

"""
Channel Stock State Machines

================================================================================
Every status change in the system goes through one of the two tables below.
Services never compare status strings ad hoc; they ask the machine for the
target state of an event and let it raise InvalidTransition.
================================================================================

STOCK REQUEST:
    draft -> submitted -> approved -> allocated -> packed -> shipped -> received
    any non-terminal state --cancel--> cancelled

SALES CHANNEL:
    draft -> submitted -> approved -> active -> pending_return -> returning
          -> returned -> completed
    {active, returned, completed} --submit_payment--> pending_payment
    pending_payment --approve_payment--> payment_approved
    {draft, submitted, approved} --cancel--> cancelled
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import InvalidTransition


@dataclass(frozen=True)
class StateMachine:
    entity: str
    states: frozenset[str]
    terminal: frozenset[str]
    transitions: dict[tuple[str, str], str] = field(default_factory=dict)

    def __post_init__(self):
        for (src, _event), dst in self.transitions.items():
            if src not in self.states or dst not in self.states:
                raise ValueError(f"{self.entity}: transition {src}->{dst} uses an unknown state")
            if src in self.terminal:
                raise ValueError(f"{self.entity}: terminal state {src} cannot have transitions")

    @property
    def events(self) -> frozenset[str]:
        return frozenset(event for _src, event in self.transitions)

    def allowed_events(self, state: str) -> set[str]:
        return {event for (src, event) in self.transitions if src == state}

    def sources_for(self, event: str) -> set[str]:
        return {src for (src, ev) in self.transitions if ev == event}

    def can(self, state: str, event: str) -> bool:
        return (state, event) in self.transitions

    def next_state(self, state: str, event: str, *, entity_id=None) -> str:
        """Return the target state for event, or raise InvalidTransition."""
        try:
            return self.transitions[(state, event)]
        except KeyError:
            raise InvalidTransition(
                entity=self.entity,
                entity_id=entity_id,
                event=event,
                expected=self.sources_for(event),
                actual=state,
            ) from None


# ------------------------------------------------------------------------------
# Stock request pipeline
# ------------------------------------------------------------------------------

REQUEST_DRAFT = "draft"
REQUEST_SUBMITTED = "submitted"
REQUEST_APPROVED = "approved"
REQUEST_ALLOCATED = "allocated"
REQUEST_PACKED = "packed"
REQUEST_SHIPPED = "shipped"
REQUEST_RECEIVED = "received"
REQUEST_CANCELLED = "cancelled"

REQUEST_TYPE_INITIAL = "INITIAL"
REQUEST_TYPE_TOPUP = "TOPUP"
REQUEST_TYPES = {REQUEST_TYPE_INITIAL, REQUEST_TYPE_TOPUP}

_REQUEST_FORWARD = [
    (REQUEST_DRAFT, "submit", REQUEST_SUBMITTED),
    (REQUEST_SUBMITTED, "approve", REQUEST_APPROVED),
    (REQUEST_APPROVED, "upload_allocation", REQUEST_ALLOCATED),
    (REQUEST_ALLOCATED, "pack", REQUEST_PACKED),
    (REQUEST_PACKED, "ship", REQUEST_SHIPPED),
    (REQUEST_SHIPPED, "receive", REQUEST_RECEIVED),
]
_REQUEST_OPEN = [REQUEST_DRAFT, REQUEST_SUBMITTED, REQUEST_APPROVED, REQUEST_ALLOCATED, REQUEST_PACKED, REQUEST_SHIPPED]

REQUEST_MACHINE = StateMachine(
    entity="stock_request",
    states=frozenset(_REQUEST_OPEN + [REQUEST_RECEIVED, REQUEST_CANCELLED]),
    terminal=frozenset({REQUEST_RECEIVED, REQUEST_CANCELLED}),
    transitions={
        **{(src, event): dst for src, event, dst in _REQUEST_FORWARD},
        **{(src, "cancel"): REQUEST_CANCELLED for src in _REQUEST_OPEN},
    },
)


# ------------------------------------------------------------------------------
# Sales channel lifecycle
# ------------------------------------------------------------------------------

CHANNEL_DRAFT = "draft"
CHANNEL_SUBMITTED = "submitted"
CHANNEL_APPROVED = "approved"
CHANNEL_ACTIVE = "active"
CHANNEL_PENDING_RETURN = "pending_return"
CHANNEL_RETURNING = "returning"
CHANNEL_RETURNED = "returned"
CHANNEL_PENDING_PAYMENT = "pending_payment"
CHANNEL_PAYMENT_APPROVED = "payment_approved"
CHANNEL_COMPLETED = "completed"
CHANNEL_CANCELLED = "cancelled"

CHANNEL_TYPE_EVENT = "EVENT"
CHANNEL_TYPE_BRANCH = "BRANCH"
CHANNEL_TYPES = {CHANNEL_TYPE_EVENT, CHANNEL_TYPE_BRANCH}

CHANNEL_MACHINE = StateMachine(
    entity="sales_channel",
    states=frozenset({
        CHANNEL_DRAFT, CHANNEL_SUBMITTED, CHANNEL_APPROVED, CHANNEL_ACTIVE,
        CHANNEL_PENDING_RETURN, CHANNEL_RETURNING, CHANNEL_RETURNED,
        CHANNEL_PENDING_PAYMENT, CHANNEL_PAYMENT_APPROVED,
        CHANNEL_COMPLETED, CHANNEL_CANCELLED,
    }),
    terminal=frozenset({CHANNEL_PAYMENT_APPROVED, CHANNEL_CANCELLED}),
    transitions={
        (CHANNEL_DRAFT, "submit"): CHANNEL_SUBMITTED,
        (CHANNEL_DRAFT, "approve"): CHANNEL_APPROVED,
        (CHANNEL_SUBMITTED, "approve"): CHANNEL_APPROVED,
        (CHANNEL_APPROVED, "activate"): CHANNEL_ACTIVE,
        (CHANNEL_ACTIVE, "close_stock"): CHANNEL_PENDING_RETURN,
        (CHANNEL_PENDING_RETURN, "ship_return"): CHANNEL_RETURNING,
        (CHANNEL_RETURNING, "confirm_return"): CHANNEL_RETURNED,
        (CHANNEL_RETURNED, "complete"): CHANNEL_COMPLETED,
        (CHANNEL_ACTIVE, "submit_payment"): CHANNEL_PENDING_PAYMENT,
        (CHANNEL_RETURNED, "submit_payment"): CHANNEL_PENDING_PAYMENT,
        (CHANNEL_COMPLETED, "submit_payment"): CHANNEL_PENDING_PAYMENT,
        (CHANNEL_PENDING_PAYMENT, "approve_payment"): CHANNEL_PAYMENT_APPROVED,
        (CHANNEL_DRAFT, "cancel"): CHANNEL_CANCELLED,
        (CHANNEL_SUBMITTED, "cancel"): CHANNEL_CANCELLED,
        (CHANNEL_APPROVED, "cancel"): CHANNEL_CANCELLED,
    },
)

# Details (name, staff, initial quantity) are editable only before approval
CHANNEL_EDITABLE_STATUSES = {CHANNEL_DRAFT, CHANNEL_SUBMITTED}
