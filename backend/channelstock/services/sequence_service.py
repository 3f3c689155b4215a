# Overview: Service-layer operations for generated codes (channel codes, bill codes).

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..state_machine import CHANNEL_TYPE_EVENT


def next_sequence_number(*, scope: str, prefix: str) -> int:
    """
    Atomically allocate the next number for (scope, prefix).

    Runs inside the caller's transaction: the increment is a single UPDATE,
    so two writers on the same row serialize on its lock. The first number
    for a new prefix is created under a savepoint so a concurrent insert of
    the same row falls back to the UPDATE path.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.scope == scope,
            DocumentSequence.prefix == prefix,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    if not db.session.execute(stmt).rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(scope=scope, prefix=prefix, next_number=2))
            return 1
        except IntegrityError:
            if not db.session.execute(stmt).rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(scope=scope, prefix=prefix)
        .scalar()
    )
    return current - 1


def next_channel_code(channel_type: str, *, today: date | None = None) -> str:
    """EVENT -> EV-YYYYMM-NNN (sequence per month), BRANCH -> BR-NNN."""
    if channel_type == CHANNEL_TYPE_EVENT:
        today = today or date.today()
        prefix = f"EV-{today.year}{today.month:02d}-"
    else:
        prefix = "BR-"
    number = next_sequence_number(scope="channel", prefix=prefix)
    return f"{prefix}{number:03d}"


def next_bill_code(channel_code: str) -> str:
    """Per-channel running bill number: {channel_code}-NNNN."""
    number = next_sequence_number(scope="sale", prefix=channel_code)
    return f"{channel_code}-{number:04d}"
