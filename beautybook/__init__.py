from __future__ import annotations

from flask import Flask
from flask_cors import CORS

from .cli import register_commands
from .config import Config
from .errors import register_error_handlers
from .extensions import db
from .routes import bp


def _engine_options(uri: str, timeout_seconds: float) -> dict[str, object]:
    # Bounded lock waits surface as OperationalError and map to a retryable timeout.
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout_seconds, "check_same_thread": False}}
    if uri.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "connect_args": {"options": f"-c statement_timeout={int(timeout_seconds * 1000)}"},
        }
    return {"pool_pre_ping": True}


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    if isinstance(config_object, dict):
        app.config.update(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)
    else:
        app.config.from_envvar("BEAUTYBOOK_SETTINGS", silent=True)

    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        _engine_options(app.config["SQLALCHEMY_DATABASE_URI"], app.config["BOOKING_TIMEOUT_SECONDS"]),
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)

    CORS(app,
         origins=app.config.get("CORS_ORIGINS", "*").split(","),
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization", "Idempotency-Key"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )

    register_error_handlers(app)
    app.register_blueprint(bp)
    register_commands(app)

    return app
