import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, request

from app.hbm.config import check_production_settings, load_config, load_settings
from app.hbm.db import init_db, teardown_db_session
from app.hbm.errors import ServiceError
from app.hbm.routes import bp as routes_bp
from app.hbm.auth import load_service_context
from app.hbm.modules.inquiries.admin import bp as inquiries_bp
from app.hbm.modules.orders.admin import bp as orders_bp
from app.hbm.modules.roles.admin import bp as roles_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.json.sort_keys = False

    level = logging.getLevelName(app.config.get("LOG_LEVEL") or "INFO")
    if not isinstance(level, int):
        raise RuntimeError(f"LOG_LEVEL {app.config.get('LOG_LEVEL')!r} is not a logging level.")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("app.hbm").setLevel(level)
    app.logger.setLevel(level)

    # Production guardrails (fail fast with clear logs)
    check_production_settings(load_settings())

    if app.config.get("STATUS_HISTORY_BACKEND") not in ("sql", "memory"):
        raise RuntimeError("STATUS_HISTORY_BACKEND must be 'sql' or 'memory'.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(inquiries_bp, url_prefix="/api/inquiries")
    app.register_blueprint(orders_bp, url_prefix="/api/orders")
    app.register_blueprint(roles_bp, url_prefix="/api/roles")

    app.before_request(load_service_context)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ServiceError)
    def _service_error(e: ServiceError):  # type: ignore[no-redef]
        ctx = getattr(g, "service_context", None)
        app.logger.warning(
            "%s on %s %s: %s (user_id=%s request_id=%s)",
            e.code,
            request.method,
            request.path,
            e.message,
            getattr(ctx, "user_id", None),
            getattr(g, "request_id", None),
        )
        return {"error": {"code": e.code, "message": e.message}}, e.status_code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return {"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}}, 500

    logging.getLogger(__name__).info(
        "create_app() complete; status history backend=%s", app.config["STATUS_HISTORY_BACKEND"]
    )

    return app
