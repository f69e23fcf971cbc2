import os

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from central_aprovacao.config import Config
from central_aprovacao.db import close_db, init_db
from central_aprovacao.db_migrations import register_db_cli
from central_aprovacao.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _configure_idempotency(app)
    _register_error_handlers(app)
    _register_blueprints(app)
    _register_health(app)
    _register_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _configure_idempotency(app: Flask) -> None:
    from central_aprovacao.contexts.approvals.application.dispatcher import get_idempotency_guard

    get_idempotency_guard().configure(ttl_seconds=int(app.config.get("IDEMPOTENCY_TTL_SECONDS", 600)))


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development; use flask db upgrade.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from central_aprovacao.contexts.approvals.interfaces.http import approvals_bp
    from central_aprovacao.contexts.erp.interfaces.http import tenants_bp

    app.register_blueprint(approvals_bp)
    app.register_blueprint(tenants_bp)


def _register_cli(app: Flask) -> None:
    from central_aprovacao.contexts.erp.interfaces.cli import register_tenant_cli

    register_db_cli(app)
    register_tenant_cli(app)


def _register_error_handlers(app: Flask) -> None:
    from central_aprovacao.errors import AppError, SystemError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        from central_aprovacao.contexts.erp.infrastructure.tenant_repository import load_tenant_registry
        from central_aprovacao.db import get_db

        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "metrics": {"http": metrics_snapshot()},
        }
        try:
            registry = load_tenant_registry(get_db())
            payload["tenants"] = {
                "configured": len(registry),
                "active": [tenant.tenant_id for tenant in registry.active_tenants()],
                "default": registry.default_tenant_id,
            }
        except Exception as exc:  # noqa: BLE001
            app.logger.warning("health_tenants_unavailable", extra={"details": str(exc)})
            payload["status"] = "degraded"
            payload["tenants"] = {"configured": 0, "active": [], "default": None}
        return payload, 200

    @app.route("/metrics")
    def metrics():
        return Response(prometheus_metrics_text(), mimetype="text/plain; version=0.0.4")
