"""
Channel lifecycle tests.

Verifies:
- Channel creation: codes, date rules, staff, INITIAL request
- Editing only before approval
- Activation through the RequestReceived hook and through activate_channel
- Cancellation cascades to open requests
- Return and payment flows after close-out
"""

import re
from datetime import date

import pytest

from channelstock.errors import InvalidTransition, NotFoundError, ValidationError
from channelstock.events import request_received
from channelstock.extensions import db
from channelstock.models import ChannelLog, ReturnShipment, StockMovement
from channelstock.services import channel_service, closeout_service, sequence_service, stock_request_service
from tests.conftest import create_active_channel, create_event_channel, initial_request, run_pipeline


def _actions(channel_id):
    return [
        log.action
        for log in db.session.query(ChannelLog).filter_by(channel_id=channel_id).order_by(ChannelLog.id)
    ]


class TestCreateChannel:

    def test_event_channel_code_and_initial_request(self, db_session):
        channel = create_event_channel(quantity=300, staff=[{"staff_id": "E-1", "is_main": True}, "E-2"])

        assert re.fullmatch(r"EV-\d{6}-001", channel.code)
        assert channel.status == "draft"
        assert channel.start_date == date(2026, 11, 1)
        assert [(s.staff_id, s.is_main) for s in channel.staff] == [("E-1", True), ("E-2", False)]
        assert len(channel.stock_requests) == 1
        assert initial_request(channel).requested_total_quantity == 300
        assert _actions(channel.id) == ["channel_created", "stock_request_created"]

    def test_codes_are_sequential(self, db_session):
        first = create_event_channel()
        second = create_event_channel()
        branch = channel_service.create_channel("BRANCH", "Downtown Store", initial_quantity=50)

        assert first.code.endswith("-001")
        assert second.code.endswith("-002")
        assert branch.code == "BR-001"

    def test_monthly_event_prefix(self, db_session):
        assert sequence_service.next_channel_code("EVENT", today=date(2026, 10, 19)) == "EV-202610-001"
        assert sequence_service.next_channel_code("EVENT", today=date(2026, 10, 20)) == "EV-202610-002"
        assert sequence_service.next_channel_code("EVENT", today=date(2026, 11, 1)) == "EV-202611-001"
        db.session.commit()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"start_date": None},
            {"end_date": "2026-10-01"},
            {"start_date": "not-a-date"},
            {"quantity": 0},
            {"channel_type": "KIOSK"},
            {"name": "  "},
            {"staff": [{"staff_id": "E-1", "is_main": True}, {"staff_id": "E-2", "is_main": True}]},
            {"staff": ["E-1", "E-1"]},
        ],
        ids=["no-start", "end-before-start", "bad-date", "zero-qty", "bad-type", "blank-name", "two-main", "dup-staff"],
    )
    def test_invalid_input_creates_nothing(self, db_session, overrides):
        with pytest.raises(ValidationError):
            create_event_channel(**overrides)
        assert channel_service.list_channels() == []

    def test_branch_has_no_dates(self, db_session):
        with pytest.raises(ValidationError):
            channel_service.create_channel(
                "BRANCH", "Downtown", initial_quantity=5, start_date="2026-11-01", end_date="2026-11-02"
            )


class TestUpdateChannel:

    def test_update_details_staff_and_initial_quantity(self, db_session):
        channel = create_event_channel(quantity=100)
        channel_service.update_channel(
            channel.id,
            {"name": "Renamed Booth", "staff": ["E-9"], "initial_quantity": 150, "end_date": "2026-11-05"},
            actor="planner",
        )

        channel = channel_service.get_channel(channel.id)
        assert channel.name == "Renamed Booth"
        assert channel.end_date == date(2026, 11, 5)
        assert [s.staff_id for s in channel.staff] == ["E-9"]
        assert initial_request(channel).requested_total_quantity == 150

    def test_update_keeps_date_rule(self, db_session):
        channel = create_event_channel()
        with pytest.raises(ValidationError):
            channel_service.update_channel(channel.id, {"end_date": "2026-10-01"})

    def test_no_edits_after_approval(self, db_session):
        channel = create_event_channel()
        stock_request_service.approve_request(initial_request(channel).id)
        with pytest.raises(InvalidTransition) as exc:
            channel_service.update_channel(channel.id, {"name": "Too late"})
        assert exc.value.actual == "approved"


class TestApproval:

    def test_submit_then_approve(self, db_session):
        channel = create_event_channel()
        channel_service.submit_channel(channel.id)
        assert channel.status == "submitted"
        channel_service.approve_channel(channel.id)
        assert channel.status == "approved"
        with pytest.raises(InvalidTransition):
            channel_service.approve_channel(channel.id)

    def test_approving_initial_request_approves_channel(self, db_session):
        channel = create_event_channel()
        stock_request_service.approve_request(initial_request(channel).id)
        assert channel_service.get_channel(channel.id).status == "approved"
        assert "channel_approved" in _actions(channel.id)

    def test_approving_request_of_approved_channel_leaves_channel_alone(self, db_session):
        channel = create_event_channel()
        channel_service.approve_channel(channel.id)
        stock_request_service.approve_request(initial_request(channel).id)
        assert channel_service.get_channel(channel.id).status == "approved"
        assert _actions(channel.id).count("channel_approved") == 1


class TestActivation:

    def test_receiving_initial_request_activates(self, db_session):
        channel = create_active_channel({"A": 5})
        assert channel.status == "active"
        assert "channel_activated" in _actions(channel.id)

    def test_explicit_hook_without_event_wiring(self, db_session):
        channel = create_event_channel(quantity=5)
        request_received.disconnect(channel_service.on_request_received)
        try:
            run_pipeline(initial_request(channel), {"A": 5})
        finally:
            channel_service.register_event_handlers()

        assert channel_service.get_channel(channel.id).status == "approved"
        channel_service.activate_channel(channel.id, actor="ops")
        assert channel_service.get_channel(channel.id).status == "active"

    def test_activate_requires_received_initial_request(self, db_session):
        channel = create_event_channel(quantity=5)
        stock_request_service.approve_request(initial_request(channel).id)
        with pytest.raises(ValidationError):
            channel_service.activate_channel(channel.id)
        assert channel_service.get_channel(channel.id).status == "approved"

    def test_activate_twice_is_invalid(self, db_session):
        channel = create_active_channel({"A": 5})
        with pytest.raises(InvalidTransition):
            channel_service.activate_channel(channel.id)


class TestCancelChannel:

    def test_cancel_cascades_to_open_requests(self, db_session):
        channel = create_event_channel()
        channel_service.cancel_channel(channel.id, "Venue fell through", actor="planner")

        req = initial_request(channel_service.get_channel(channel.id))
        assert channel.status == "cancelled"
        assert req.status == "cancelled"
        assert req.rejection_reason == "Venue fell through"

    def test_cannot_cancel_active_channel(self, db_session):
        channel = create_active_channel({"A": 5})
        with pytest.raises(InvalidTransition):
            channel_service.cancel_channel(channel.id)


class TestReturnAndPayment:

    def test_full_close_flow(self, db_session):
        channel = create_active_channel({"A": 10, "B": 4})
        closeout_service.close_channel_stock(channel.id, [{"barcode": "A", "damaged": 1, "missing": 2}])

        shipment = channel_service.create_return_shipment(channel.id, "FastCargo", "RET-1", actor="channel")
        assert isinstance(shipment, ReturnShipment)
        assert channel_service.get_channel(channel.id).status == "returning"

        channel_service.confirm_return_received(channel.id, actor="warehouse")
        channel = channel_service.get_channel(channel.id)
        assert channel.status == "returned"

        returns = {
            m.barcode: m.quantity
            for m in db.session.query(StockMovement).filter_by(channel_id=channel.id, movement_type="RETURN")
        }
        assert returns == {"A": 7, "B": 4}
        assert all(e.confirmed_by == "warehouse" for e in closeout_service.get_closeout(channel.id))

        channel_service.close_channel_manual(channel.id)
        assert channel.status == "completed"

        channel_service.submit_for_payment_approval(channel.id)
        assert channel.status == "pending_payment"
        with pytest.raises(InvalidTransition):
            channel_service.submit_for_payment_approval(channel.id)

        channel_service.approve_payment(channel.id)
        assert channel.status == "payment_approved"

    def test_return_shipment_requires_close_out(self, db_session):
        channel = create_active_channel({"A": 10})
        with pytest.raises(InvalidTransition):
            channel_service.create_return_shipment(channel.id, "FastCargo")

    def test_manual_close_only_from_returned(self, db_session):
        channel = create_active_channel({"A": 10})
        with pytest.raises(InvalidTransition) as exc:
            channel_service.close_channel_manual(channel.id)
        assert exc.value.expected == ["returned"]

    def test_active_branch_can_go_to_payment(self, db_session):
        channel = channel_service.create_channel("BRANCH", "Downtown", initial_quantity=5)
        run_pipeline(initial_request(channel), {"A": 5})
        channel_service.submit_for_payment_approval(channel.id)
        assert channel_service.get_channel(channel.id).status == "pending_payment"


class TestQueries:

    def test_get_unknown_channel(self, db_session):
        with pytest.raises(NotFoundError):
            channel_service.get_channel(999)

    def test_list_filters(self, db_session):
        event = create_event_channel()
        branch = channel_service.create_channel("BRANCH", "Downtown", initial_quantity=5)
        channel_service.submit_channel(event.id)

        assert [c.id for c in channel_service.list_channels(status="submitted")] == [event.id]
        assert [c.id for c in channel_service.list_channels(channel_type="BRANCH")] == [branch.id]
        with pytest.raises(ValidationError):
            channel_service.list_channels(status="archived")
