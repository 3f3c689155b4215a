"""
Flask CLI command tests.
"""

from channelstock.services import closeout_service, sales_service
from tests.conftest import create_active_channel, create_event_channel


A = "SKU-A-RED-M"


def test_init_db_is_safe_on_existing_schema(app, db_session):
    create_event_channel()
    result = app.test_cli_runner().invoke(args=["system", "init-db"])
    assert result.exit_code == 0
    assert "PASS" in result.output


def test_check_ledger_passes(app, db_session):
    channel = create_active_channel({A: 4})
    sales_service.create_sale(channel.id, [{"barcode": A, "quantity": 4, "unit_price_cents": 100}])

    result = app.test_cli_runner().invoke(args=["channels", "check-ledger"])
    assert result.exit_code == 0
    assert "PASS Ledger invariant holds for every row." in result.output


def test_list_channels(app, db_session):
    active = create_active_channel({A: 4})
    draft = create_event_channel(name="Autumn Fair")

    runner = app.test_cli_runner()
    result = runner.invoke(args=["channels", "list"])
    assert result.exit_code == 0
    assert active.code in result.output
    assert draft.code in result.output

    result = runner.invoke(args=["channels", "list", "--status", "draft"])
    assert draft.code in result.output
    assert active.code not in result.output


def test_list_channels_empty(app, db_session):
    result = app.test_cli_runner().invoke(args=["channels", "list"])
    assert result.exit_code == 0
    assert "No channels found." in result.output


def test_show_channel_prints_ledger_and_closeout(app, db_session):
    channel = create_active_channel({A: 10})
    closeout_service.close_channel_stock(channel.id, [{"barcode": A, "damaged": 3, "missing": 9}])

    result = app.test_cli_runner().invoke(args=["channels", "show", str(channel.id)])
    assert result.exit_code == 0
    assert "status=pending_return" in result.output
    assert "received=10" in result.output
    assert "returned=0 (clamped)" in result.output


def test_show_unknown_channel_fails(app, db_session):
    result = app.test_cli_runner().invoke(args=["channels", "show", "4242"])
    assert result.exit_code != 0
    assert "not found" in result.output
