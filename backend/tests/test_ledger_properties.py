"""
Property-based tests for the quantity invariants.

Verifies, over generated inputs:
- 0 <= sold <= received after every credit / debit / reversal, and the
  ledger matches a plain in-memory model of the same operations
- try_debit is all-or-nothing: a failed basket leaves every row unchanged
- clamp() keeps damaged + missing <= remaining, so returned >= 0
- Cancelling a sale any number of times restores the ledger exactly once
"""

from collections import Counter

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from channelstock.errors import InsufficientStock, LedgerInvariantError
from channelstock.extensions import db
from channelstock.models import ChannelStock
from channelstock.services import ledger_service, sales_service
from channelstock.services.closeout_service import clamp
from channelstock.services.concurrency import begin_write
from tests.conftest import create_event_channel


BARCODES = st.sampled_from(["A", "B", "C"])

LEDGER_OPS = st.lists(
    st.one_of(
        st.tuples(st.just("credit"), BARCODES, st.integers(min_value=1, max_value=20)),
        st.tuples(
            st.just("debit"),
            st.lists(st.tuples(BARCODES, st.integers(min_value=1, max_value=15)), min_size=1, max_size=4),
        ),
        st.tuples(st.just("reverse"), BARCODES, st.integers(min_value=1, max_value=15)),
    ),
    max_size=25,
)

DB_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


def _unit(func):
    """One committed write unit, rolled back if func raises."""
    begin_write()
    try:
        func()
    except Exception:
        db.session.rollback()
        raise
    db.session.commit()


def _ledger(channel_id) -> dict:
    rows = db.session.query(ChannelStock).filter_by(channel_id=channel_id).all()
    return {row.barcode: (row.received, row.sold) for row in rows}


class TestLedgerSequences:

    @DB_SETTINGS
    @given(ops=LEDGER_OPS)
    def test_ledger_follows_model_and_keeps_invariant(self, db_session, ops):
        channel_id = create_event_channel(quantity=100).id
        received, sold = Counter(), Counter()

        for op in ops:
            if op[0] == "credit":
                _, barcode, qty = op
                _unit(lambda: ledger_service.credit(channel_id, barcode, qty))
                received[barcode] += qty

            elif op[0] == "debit":
                basket = op[1]
                wanted = Counter()
                for barcode, qty in basket:
                    wanted[barcode] += qty
                fits = all(qty <= received[b] - sold[b] for b, qty in wanted.items())
                before = _ledger(channel_id)

                if fits:
                    _unit(lambda: ledger_service.try_debit(channel_id, basket))
                    sold.update(wanted)
                else:
                    with pytest.raises(InsufficientStock):
                        _unit(lambda: ledger_service.try_debit(channel_id, basket))
                    assert _ledger(channel_id) == before

            else:
                _, barcode, qty = op
                if qty <= sold[barcode]:
                    _unit(lambda: ledger_service.reverse_debit(channel_id, [(barcode, qty)]))
                    sold[barcode] -= qty
                else:
                    with pytest.raises(LedgerInvariantError):
                        _unit(lambda: ledger_service.reverse_debit(channel_id, [(barcode, qty)]))

            ledger = _ledger(channel_id)
            assert all(0 <= s <= r for r, s in ledger.values())
            assert ledger == {b: (received[b], sold[b]) for b in received}

        assert ledger_service.find_invariant_violations() == []


class TestClampProperty:

    @given(
        remaining=st.integers(min_value=0, max_value=10_000),
        damaged=st.integers(min_value=0, max_value=20_000),
        missing=st.integers(min_value=0, max_value=20_000),
    )
    def test_clamp_conserves_quantity(self, remaining, damaged, missing):
        kept_damaged, kept_missing = clamp(remaining, damaged, missing)

        assert 0 <= kept_damaged <= damaged
        assert 0 <= kept_missing <= missing
        assert kept_damaged + kept_missing <= remaining
        assert remaining - kept_damaged - kept_missing >= 0

        if damaged + missing <= remaining:
            assert (kept_damaged, kept_missing) == (damaged, missing)
        else:
            # clamped values use up all remaining stock
            assert kept_damaged + kept_missing == remaining


class TestCancelIdempotence:

    @DB_SETTINGS
    @given(quantity=st.integers(min_value=1, max_value=10), cancels=st.integers(min_value=1, max_value=4))
    def test_repeated_cancel_reverses_once(self, active_channel, quantity, cancels):
        barcode = "SKU-A-RED-M"
        assert ledger_service.remaining_of(active_channel.id, barcode) == 10

        sale = sales_service.create_sale(
            active_channel.id, [{"barcode": barcode, "quantity": quantity, "unit_price_cents": 100}]
        )
        assert ledger_service.remaining_of(active_channel.id, barcode) == 10 - quantity

        for n in range(cancels):
            sales_service.cancel_sale(sale.id, f"cancel {n}")

        sale = sales_service.get_sale(sale.id)
        assert sale.status == "cancelled"
        assert sale.cancel_reason == "cancel 0"
        assert ledger_service.remaining_of(active_channel.id, barcode) == 10
