# backend/channelstock/__init__.py
from flask import Flask, jsonify

from .config import Config
from .errors import ChannelStockError
from .extensions import db, migrate
from .logging_setup import configure_logging


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.channels import channels_bp
    from .routes.stock_requests import stock_requests_bp
    from .routes.sales import sales_bp
    from .routes.closeout import closeout_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(channels_bp)
    app.register_blueprint(stock_requests_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(closeout_bp)

    @app.errorhandler(ChannelStockError)
    def handle_channel_stock_error(e: ChannelStockError):
        db.session.rollback()
        if e.http_status >= 500:
            app.logger.error("Ledger invariant violated: %s %s", e.message, e.details)
        return jsonify(e.to_dict()), e.http_status

    # Cross-entity triggers (INITIAL request received -> channel active)
    from .services.channel_service import register_event_handlers
    register_event_handlers()

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
