"""
Channel stock ledger tests.

Verifies:
- credit creates the row on first receipt and accumulates afterwards
- try_debit is all-or-nothing across a basket
- reverse_debit never drives sold below zero
- 0 <= sold <= received holds after every operation
"""

import pytest
from sqlalchemy import update

from channelstock.errors import ConcurrencyConflict, InsufficientStock, LedgerInvariantError, ValidationError
from channelstock.extensions import db
from channelstock.models import ChannelStock
from channelstock.services import ledger_service
from channelstock.services.concurrency import begin_write, run_with_retry
from tests.conftest import create_event_channel


@pytest.fixture
def channel(db_session):
    return create_event_channel(quantity=100)


def _credit(channel_id, barcode, qty):
    begin_write()
    row = ledger_service.credit(channel_id, barcode, qty)
    db.session.commit()
    return row


def _row(channel_id, barcode):
    return db.session.query(ChannelStock).filter_by(channel_id=channel_id, barcode=barcode).one()


class TestCredit:

    def test_first_credit_creates_row(self, channel):
        _credit(channel.id, "A", 12)
        row = _row(channel.id, "A")
        assert (row.received, row.sold, row.remaining) == (12, 0, 12)

    def test_credits_accumulate(self, channel):
        _credit(channel.id, "A", 12)
        _credit(channel.id, "A", 8)
        assert _row(channel.id, "A").received == 20
        assert db.session.query(ChannelStock).filter_by(channel_id=channel.id).count() == 1

    def test_non_positive_credit_rejected(self, channel):
        with pytest.raises(ValidationError):
            ledger_service.credit(channel.id, "A", 0)


class TestTryDebit:

    def test_debit_whole_basket(self, channel):
        _credit(channel.id, "A", 10)
        _credit(channel.id, "B", 5)

        begin_write()
        ledger_service.try_debit(channel.id, [("A", 3), ("B", 5)])
        db.session.commit()

        assert _row(channel.id, "A").sold == 3
        assert _row(channel.id, "B").remaining == 0

    def test_repeated_barcode_is_summed(self, channel):
        _credit(channel.id, "A", 10)

        begin_write()
        with pytest.raises(InsufficientStock) as exc:
            ledger_service.try_debit(channel.id, [("A", 6), ("A", 6)])
        db.session.rollback()

        assert exc.value.requested == 12
        assert exc.value.available == 10

    def test_failure_debits_nothing(self, channel):
        _credit(channel.id, "A", 10)
        _credit(channel.id, "B", 5)

        begin_write()
        with pytest.raises(InsufficientStock) as exc:
            ledger_service.try_debit(channel.id, [("A", 3), ("B", 6)])
        db.session.rollback()

        assert exc.value.barcode == "B"
        assert exc.value.available == 5
        assert _row(channel.id, "A").sold == 0
        assert _row(channel.id, "B").sold == 0

    def test_unknown_barcode_has_nothing_available(self, channel):
        begin_write()
        with pytest.raises(InsufficientStock) as exc:
            ledger_service.try_debit(channel.id, [("NOPE", 1)])
        db.session.rollback()
        assert exc.value.available == 0

    def test_debit_bumps_version(self, channel):
        _credit(channel.id, "A", 10)
        before = _row(channel.id, "A").version_id

        begin_write()
        ledger_service.try_debit(channel.id, [("A", 1)])
        db.session.commit()

        assert _row(channel.id, "A").version_id == before + 1

    def test_empty_basket_rejected(self, channel):
        with pytest.raises(ValidationError):
            ledger_service.try_debit(channel.id, [])


class TestReverseDebit:

    def test_reverse_restores_remaining(self, channel):
        _credit(channel.id, "A", 10)
        begin_write()
        ledger_service.try_debit(channel.id, [("A", 4)])
        db.session.commit()

        begin_write()
        ledger_service.reverse_debit(channel.id, [("A", 4)])
        db.session.commit()

        assert _row(channel.id, "A").sold == 0
        assert ledger_service.remaining_of(channel.id, "A") == 10

    def test_reverse_below_zero_is_invariant_error(self, channel):
        _credit(channel.id, "A", 10)
        begin_write()
        ledger_service.try_debit(channel.id, [("A", 2)])
        db.session.commit()

        begin_write()
        with pytest.raises(LedgerInvariantError):
            ledger_service.reverse_debit(channel.id, [("A", 3)])
        db.session.rollback()

        assert _row(channel.id, "A").sold == 2

    def test_reverse_missing_row_is_invariant_error(self, channel):
        begin_write()
        with pytest.raises(LedgerInvariantError):
            ledger_service.reverse_debit(channel.id, [("GHOST", 1)])
        db.session.rollback()


class TestQueries:

    def test_remaining_of_unknown_barcode_is_zero(self, channel):
        assert ledger_service.remaining_of(channel.id, "NOPE") == 0

    def test_invariant_check_finds_nothing_after_normal_use(self, channel):
        _credit(channel.id, "A", 10)
        begin_write()
        ledger_service.try_debit(channel.id, [("A", 10)])
        db.session.commit()
        assert ledger_service.find_invariant_violations() == []

    def test_channel_stock_is_ordered_by_barcode(self, channel):
        _credit(channel.id, "C", 1)
        _credit(channel.id, "A", 1)
        _credit(channel.id, "B", 1)
        assert [r.barcode for r in ledger_service.get_channel_stock(channel.id)] == ["A", "B", "C"]


class TestStaleVersion:

    def test_stale_ledger_row_surfaces_as_conflict(self, channel):
        _credit(channel.id, "A", 10)

        def _op():
            begin_write()
            row = _row(channel.id, "A")
            # Another writer bumps the version after we loaded the row
            db.session.execute(
                update(ChannelStock)
                .where(ChannelStock.id == row.id)
                .values(version_id=ChannelStock.version_id + 1)
                .execution_options(synchronize_session=False)
            )
            row.sold = 1
            db.session.flush()

        with pytest.raises(ConcurrencyConflict) as exc:
            run_with_retry(_op)

        assert exc.value.entity == "versioned_row"
        assert exc.value.to_dict()["code"] == "concurrency_conflict"
        assert _row(channel.id, "A").sold == 0
