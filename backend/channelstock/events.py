# Overview: Domain events published by the stock request pipeline.

"""
Cross-entity triggers are explicit events, not polling.

Receivers run synchronously inside the sender's transaction, so whatever a
receiver writes commits or rolls back together with the event that caused it.
A receiver that raises aborts the sender's whole unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass

from blinker import Namespace

_signals = Namespace()

#: Sent with a RequestReceived as sender once a stock request reaches `received`.
request_received = _signals.signal("request-received")


@dataclass(frozen=True)
class RequestReceived:
    request_id: int
    channel_id: int
    request_type: str
    received_total: int
    actor: str | None = None
