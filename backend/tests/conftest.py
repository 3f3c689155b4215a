"""
Pytest fixtures for channel stock backend tests.

Provides test database setup, test client, and factories that drive
channels through the real services into each lifecycle stage.
"""

import pytest
from channelstock import create_app
from channelstock.extensions import db
from channelstock.services import channel_service, stock_request_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0.01,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# FACTORIES
# =============================================================================


def create_event_channel(quantity=500, **overrides):
    """EVENT channel in draft, with its INITIAL request in submitted."""
    kwargs = dict(
        channel_type="EVENT",
        name="Weekend Pop-up",
        initial_quantity=quantity,
        location="Mall Atrium",
        start_date="2026-11-01",
        end_date="2026-11-03",
        actor="planner",
    )
    kwargs.update(overrides)
    return channel_service.create_channel(
        kwargs.pop("channel_type"), kwargs.pop("name"), **kwargs
    )


def initial_request(channel):
    return next(r for r in channel.stock_requests if r.request_type == "INITIAL")


def run_pipeline(req, stock: dict, *, received: dict | None = None):
    """
    Drive a request from submitted to received.

    stock: barcode -> packed quantity. received: barcode -> received
    quantity (defaults to the packed quantity).
    """
    received = received or stock
    if req.status == "draft":
        stock_request_service.submit_request(req.id, actor="channel")
    stock_request_service.approve_request(req.id, actor="manager")
    stock_request_service.upload_allocation(
        req.id,
        [{"barcode": b, "size": "M", "packed_quantity": q, "unit_price_cents": 10000} for b, q in stock.items()],
        actor="warehouse",
    )
    stock_request_service.confirm_packing(req.id, actor="warehouse")
    stock_request_service.create_shipment(req.id, "FastCargo", "TRK-1", actor="warehouse")
    return stock_request_service.confirm_receiving(
        req.id,
        [{"barcode": b, "received_qty": q} for b, q in received.items()],
        actor="channel",
    )


def create_active_channel(stock: dict, **overrides):
    """EVENT channel that has received `stock` (barcode -> qty) and is active."""
    channel = create_event_channel(quantity=sum(stock.values()), **overrides)
    run_pipeline(initial_request(channel), stock)
    return channel_service.get_channel(channel.id)


@pytest.fixture
def active_channel(db_session):
    """Active EVENT channel holding A=10, B=5, C=20."""
    return create_active_channel({"SKU-A-RED-M": 10, "SKU-B-BLU-L": 5, "SKU-C-BLK-S": 20})
