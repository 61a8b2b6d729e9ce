from __future__ import annotations

from typing import Any

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_jwt_extended import JWTManager
from sqlalchemy.exc import OperationalError, ProgrammingError

from .activity import activity_bp
from .admin import admin_bp, users_cli
from .auth import auth_bp
from .bootstrap import bootstrap_defaults
from .common.errors import error_payload, register_error_handlers
from .common.object_store import ObjectStore, init_object_store
from .config import Config
from .extensions import cors, db, jwt, migrate
from .files import files_bp
from .shares import public_shares_bp, shares_bp
from .trash import start_purge_scheduler, trash_bp, trash_cli


load_dotenv()


def _register_jwt_handlers(jwt_manager: JWTManager) -> None:
    @jwt_manager.unauthorized_loader
    def unauthorized(reason: str):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("UNAUTHENTICATED", "Missing or invalid authentication token.", {"reason": reason})), 401

    @jwt_manager.invalid_token_loader
    def invalid_token(reason: str):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("UNAUTHENTICATED", "Invalid token.", {"reason": reason})), 401

    @jwt_manager.expired_token_loader
    def expired_token(jwt_header, jwt_payload):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("UNAUTHENTICATED", "Token has expired.", {"reason": "expired"})), 401


def create_app(config_override: dict[str, Any] | None = None, object_store: ObjectStore | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    _register_jwt_handlers(jwt)
    cors.init_app(app, resources={r"/*": {"origins": app.config["FRONTEND_ORIGINS"]}})
    init_object_store(app, object_store)

    app.register_blueprint(auth_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(shares_bp)
    app.register_blueprint(public_shares_bp)
    app.register_blueprint(trash_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(activity_bp)
    app.cli.add_command(trash_cli)
    app.cli.add_command(users_cli)

    @app.get("/health")
    def healthcheck():
        return {"status": "ok"}

    register_error_handlers(app)

    with app.app_context():
        try:
            bootstrap_defaults(commit=True)
        except (OperationalError, ProgrammingError):
            db.session.rollback()

    scheduler = start_purge_scheduler(app)
    app.extensions["trash_purge_scheduler"] = scheduler

    return app
