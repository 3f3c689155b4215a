"""
POS sales tests.

Verifies:
- Total = sum((price - discount) * qty) + adjustments - bill discount
- Sale creation debits the ledger all-or-nothing
- Cancellation reverses the debit and is idempotent
- Sales only while the channel is active
"""

import pytest

from channelstock.errors import InsufficientStock, InvalidTransition, NotFoundError, ValidationError
from channelstock.extensions import db
from channelstock.models import Sale
from channelstock.services import closeout_service, ledger_service, sales_service
from tests.conftest import create_active_channel, create_event_channel


A = "SKU-A-RED-M"
B = "SKU-B-BLU-L"


def _line(barcode, quantity, unit_price_cents=10000, discount_cents=0):
    return {
        "barcode": barcode,
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "discount_cents": discount_cents,
    }


class TestComputeTotal:

    def test_bill_with_adjustment_and_discount(self):
        total = sales_service.compute_total(
            [_line(A, 5, unit_price_cents=10000)],
            [{"description": "Gift wrap", "amount_cents": 5000}],
            2000,
        )
        assert total == 53000

    def test_line_discounts_apply_per_unit(self):
        total = sales_service.compute_total(
            [_line(A, 2, unit_price_cents=1000, discount_cents=250), _line(B, 1, unit_price_cents=500)],
            [{"description": "Voucher", "amount_cents": -300}],
            0,
        )
        assert total == 2 * 750 + 500 - 300


class TestCreateSale:

    def test_sale_debits_ledger_and_records_total(self, active_channel):
        sale = sales_service.create_sale(
            active_channel.id,
            [_line(A, 5)],
            adjustments=[{"description": "Gift wrap", "amount_cents": 5000}],
            bill_discount_cents=2000,
            actor="cashier",
        )

        assert sale.status == "active"
        assert sale.total_cents == 53000
        assert sale.bill_code == f"{active_channel.code}-0001"
        assert [line.line_total_cents for line in sale.lines] == [50000]
        assert ledger_service.remaining_of(active_channel.id, A) == 5

    def test_bill_codes_run_per_channel(self, active_channel):
        sales_service.create_sale(active_channel.id, [_line(A, 1)])
        second = sales_service.create_sale(active_channel.id, [_line(A, 1)])
        assert second.bill_code.endswith("-0002")

    def test_insufficient_stock_writes_nothing(self, active_channel):
        with pytest.raises(InsufficientStock) as exc:
            sales_service.create_sale(active_channel.id, [_line(A, 3), _line(B, 6)])

        assert exc.value.barcode == B
        assert (exc.value.requested, exc.value.available) == (6, 5)
        assert ledger_service.remaining_of(active_channel.id, A) == 10
        assert db.session.query(Sale).count() == 0

        # The failed attempt did not consume a bill number
        sale = sales_service.create_sale(active_channel.id, [_line(A, 1)])
        assert sale.bill_code.endswith("-0001")

    def test_sell_exactly_remaining(self, active_channel):
        sales_service.create_sale(active_channel.id, [_line(B, 5)])
        assert ledger_service.remaining_of(active_channel.id, B) == 0
        with pytest.raises(InsufficientStock):
            sales_service.create_sale(active_channel.id, [_line(B, 1)])

    @pytest.mark.parametrize(
        "items,kwargs",
        [
            ([], {}),
            ([_line(A, 0)], {}),
            ([_line(A, 1, discount_cents=-1)], {}),
            ([_line(A, 1, unit_price_cents=100, discount_cents=200)], {}),
            ([_line(A, 1, unit_price_cents=100)], {"bill_discount_cents": 500}),
            ([_line(A, 1)], {"adjustments": [{"amount_cents": 100}]}),
        ],
        ids=["empty", "zero-qty", "negative-discount", "discount-over-price", "negative-total", "adjustment-no-description"],
    )
    def test_invalid_sale_rejected(self, active_channel, items, kwargs):
        with pytest.raises(ValidationError):
            sales_service.create_sale(active_channel.id, items, **kwargs)
        assert ledger_service.remaining_of(active_channel.id, A) == 10

    def test_channel_must_be_active(self, db_session):
        channel = create_event_channel(quantity=10)
        with pytest.raises(InvalidTransition) as exc:
            sales_service.create_sale(channel.id, [_line(A, 1)])
        assert exc.value.event == "create_sale"

    def test_unknown_channel(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(4242, [_line(A, 1)])


class TestCancelSale:

    def test_cancel_reverses_debit(self, active_channel):
        sale = sales_service.create_sale(active_channel.id, [_line(A, 5)])
        assert ledger_service.remaining_of(active_channel.id, A) == 5

        sales_service.cancel_sale(sale.id, "Customer changed mind", actor="supervisor")

        assert sale.status == "cancelled"
        assert sale.cancel_reason == "Customer changed mind"
        assert sale.cancelled_by == "supervisor"
        assert sale.cancelled_at is not None
        assert ledger_service.remaining_of(active_channel.id, A) == 10

    def test_cancel_twice_is_a_no_op(self, active_channel):
        sale = sales_service.create_sale(active_channel.id, [_line(A, 5)])
        sales_service.cancel_sale(sale.id, "first")
        cancelled_at = sale.cancelled_at

        again = sales_service.cancel_sale(sale.id, "second")

        assert again.status == "cancelled"
        assert again.cancel_reason == "first"
        assert again.cancelled_at == cancelled_at
        assert ledger_service.remaining_of(active_channel.id, A) == 10

    def test_cancel_after_close_out_is_invalid(self, active_channel):
        sale = sales_service.create_sale(active_channel.id, [_line(A, 2)])
        closeout_service.close_channel_stock(active_channel.id, [])

        with pytest.raises(InvalidTransition):
            sales_service.cancel_sale(sale.id)
        assert sales_service.get_sale(sale.id).status == "active"

    def test_cancel_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.cancel_sale(31337)


class TestQueries:

    def test_list_sales_hides_cancelled_by_default(self, active_channel):
        kept = sales_service.create_sale(active_channel.id, [_line(A, 1)])
        dropped = sales_service.create_sale(active_channel.id, [_line(A, 1)])
        sales_service.cancel_sale(dropped.id)

        assert [s.id for s in sales_service.list_sales(active_channel.id)] == [kept.id]
        assert [s.id for s in sales_service.list_sales(active_channel.id, include_cancelled=True)] == [kept.id, dropped.id]

    def test_sale_to_dict_includes_lines_and_adjustments(self, active_channel):
        sale = sales_service.create_sale(
            active_channel.id,
            [_line(A, 1), _line(B, 2, discount_cents=1000)],
            adjustments=[{"description": "Delivery", "amount_cents": 1500}],
        )
        data = sales_service.get_sale(sale.id).to_dict()

        assert [line["line_number"] for line in data["lines"]] == [1, 2]
        assert data["lines"][1]["line_total_cents"] == 18000
        assert data["adjustments"] == [{"description": "Delivery", "amount_cents": 1500}]
        assert data["total_cents"] == 10000 + 18000 + 1500
