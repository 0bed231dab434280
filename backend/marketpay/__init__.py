# backend/marketpay/__init__.py
from flask import Flask

from .config import Config, load_click_tenants
from .extensions import db, migrate
from .services.signature_service import SignatureVerifier


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Engines are built in db.init_app, so overrides must land first
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Click merchant credentials, parsed once at startup
    app.extensions["click_signatures"] = SignatureVerifier(
        load_click_tenants(app.config.get("CLICK_TENANTS"))
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.click import click_bp  # Click prepare/complete webhooks
    from .routes.payme import payme_bp  # Payme JSON-RPC endpoint
    from .routes.contracts import contracts_bp  # Operator: periods + manual payments
    from .routes.transactions import transactions_bp  # Operator: ledger lookup
    from .routes.reconciliation import reconciliation_bp  # Operator: reports

    app.register_blueprint(system_bp)
    app.register_blueprint(click_bp)
    app.register_blueprint(payme_bp)
    app.register_blueprint(contracts_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(reconciliation_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
