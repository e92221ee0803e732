import logging
from datetime import timedelta

from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.judgemyjpeg.admin import bp as admin_bp
from app.judgemyjpeg.auth import bp as auth_bp, load_current_user
from app.judgemyjpeg.cache_policy import cache_control_for, classify_request
from app.judgemyjpeg.config import load_config
from app.judgemyjpeg.constants import (
    MSG_METHOD_NOT_ALLOWED,
    MSG_NOT_FOUND,
    MSG_SERVER_ERROR,
    MSG_TOO_LARGE,
)
from app.judgemyjpeg.db import init_db, teardown_db_session
from app.judgemyjpeg.errors import ApiError, TooManyRequests
from app.judgemyjpeg.logs import configure_logging
from app.judgemyjpeg.modules.account.routes import bp as account_bp
from app.judgemyjpeg.modules.collections.routes import bp as collections_bp
from app.judgemyjpeg.modules.feedback.admin import bp as feedback_admin_bp
from app.judgemyjpeg.modules.feedback.routes import bp as feedback_bp
from app.judgemyjpeg.modules.photos.analysis import AnalysisCache, analyzer_from_config
from app.judgemyjpeg.modules.photos.routes import bp as photos_bp
from app.judgemyjpeg.modules.reports.admin import bp as reports_admin_bp
from app.judgemyjpeg.modules.reports.routes import bp as reports_bp
from app.judgemyjpeg.modules.subscription.routes import bp as subscription_bp
from app.judgemyjpeg.ratelimit import FixedWindowRateLimiter, check_api_rate_limit, rate_limit_headers
from app.judgemyjpeg.rbac import AdminTokenStore
from app.judgemyjpeg.routes import bp as routes_bp
from app.judgemyjpeg.security import apply_security_headers, check_banned_ip
from app.judgemyjpeg.storage import S3Storage, storage_from_config

_HTTP_MESSAGES = {
    404: MSG_NOT_FOUND,
    405: MSG_METHOD_NOT_ALLOWED,
    413: MSG_TOO_LARGE,
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=30)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.ensure_ascii = False
    configure_logging(app)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("ADMIN_SECRET"):
            raise RuntimeError("ADMIN_SECRET must be set in production.")

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

    storage = storage_from_config(app.config)
    # Storage health check (fail loudly on misconfiguration)
    if isinstance(storage, S3Storage):
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            try:
                storage._client().head_bucket(Bucket=storage.bucket)
                app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.extensions["storage"] = storage
    app.extensions["rate_limiter"] = FixedWindowRateLimiter()
    app.extensions["admin_tokens"] = AdminTokenStore()
    app.extensions["analysis_cache"] = AnalysisCache()
    app.extensions["photo_analyzer"] = analyzer_from_config(app.config)
    if not app.config.get("ANALYZER_URL"):
        app.logger.warning("ANALYZER_URL not set; photo analysis requests will fail with 502")

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(feedback_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(reports_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(photos_bp)
    app.register_blueprint(collections_bp)
    app.register_blueprint(subscription_bp)
    app.register_blueprint(feedback_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(account_bp)

    app.before_request(load_current_user)
    app.before_request(check_banned_ip)
    app.before_request(check_api_rate_limit)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _response_headers(response):
        apply_security_headers(response)
        if "Cache-Control" not in response.headers:
            decision = classify_request(
                request.method,
                request.path,
                is_navigation=request.headers.get("Sec-Fetch-Mode") == "navigate",
            )
            response.headers["Cache-Control"] = cache_control_for(decision.strategy)
        result = getattr(g, "rate_limit", None)
        if result is not None:
            response.headers.update(rate_limit_headers(result))
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers.setdefault("X-Request-ID", rid)
        return response

    @app.errorhandler(ApiError)
    def _err_api(e: ApiError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("API error %s (request_id=%s): %s", e.status_code, getattr(g, "request_id", None), e.message)
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        response = jsonify(e.to_dict())
        response.status_code = e.status_code
        if isinstance(e, TooManyRequests):
            response.headers["Retry-After"] = str(e.retry_after)
        return response

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        code = e.code or 500
        response = jsonify({"error": _HTTP_MESSAGES.get(code, e.description or MSG_SERVER_ERROR)})
        response.status_code = code
        return response

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in platform logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": MSG_SERVER_ERROR}), 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
