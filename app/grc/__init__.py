import logging
from datetime import timedelta

from flask import Flask, g, request, session
from dotenv import load_dotenv

from app.grc.config import load_config
from app.grc.db import init_db, teardown_db_session
from app.grc.routes import bp as routes_bp
from app.grc.auth import bp as auth_bp, load_current_user
from app.grc.modules.framework_plugins.admin import bp as framework_plugins_bp


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    root.setLevel(level)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    _configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # CSRF protection (session token, X-CSRF-Token header)
    from app.grc.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/logout establish the session and are exempt
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return {"error": "CSRF token missing or invalid."}, 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):

            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(framework_plugins_bp, url_prefix="/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return {"error": "Internal server error."}, 500

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return {"error": "Authentication required."}, 401

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return {"error": "Forbidden.", "missing_permission": missing}, 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return {"error": "Not found."}, 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return {"error": "Package too large. Maximum size is 10MB."}, 413

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
