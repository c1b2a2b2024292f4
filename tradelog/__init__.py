import os
from flask import Flask, request, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=True)


from .config import get_config
from .extensions import db, migrate, csrf, login_manager, limiter
from .security import init_security
from .security.session import init_session_accessor
from .observability import init_logging, init_sentry


def create_app(config_overrides=None):
    app = Flask(__name__, template_folder="templates", static_folder="static")

    # Rate limiting storage: redis in stage/prod, memory elsewhere
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    app.config.from_object(get_config())
    if config_overrides:
        app.config.update(config_overrides)

    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("STRIPE_SECRET_KEY")
        _require("STRIPE_WEBHOOK_SECRET")
        _require("STRIPE_PRICE_ID")

    init_logging(app)
    init_sentry(app)

    if app_env in ("staging", "production"):
        init_security(app)

    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Identity provider access (request_loader delegates to it)
    init_session_accessor(app)

    from .blueprints.main import bp as main_bp
    from .blueprints.dashboard import bp as dashboard_bp
    from .blueprints.api import bp as api_bp
    from .blueprints.billing import bp as billing_bp
    from .blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(main_bp)                          # "/", "/subscribe"
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(billing_bp, url_prefix="/billing")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # Bearer-token JSON surfaces carry no cookie session to forge
    csrf.exempt(api_bp)
    csrf.exempt(billing_bp)
    csrf.exempt(webhooks_bp)

    try:
        limiter.exempt(app.view_functions["static"])
    except KeyError:
        pass

    @app.context_processor
    def inject_globals():
        from datetime import datetime, timezone
        return {
            "current_year": datetime.now(timezone.utc).year,
            "APP_ENV": app.config.get("APP_ENV", app_env),
            "SITE_NAME": app.config.get("SITE_NAME", "Tradelog"),
        }

    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    def _wants_json():
        return (
            "application/json" in (request.headers.get("Accept") or "").lower()
            or request.is_json
            or request.path.startswith(("/api/", "/billing/", "/webhooks/"))
        )

    @app.errorhandler(404)
    def not_found(e):
        if _wants_json():
            return jsonify({"error": "not_found"}), 404
        return ("Not Found", 404)

    @app.errorhandler(500)
    def server_error(e):
        if _wants_json():
            return jsonify({"error": "Internal error"}), 500
        return ("Internal Server Error", 500)

    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return (f"CSRF validation failed: {e.description}", 400)

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
        payload = {"error": "Too many requests"}
        if retry_after is not None:
            payload["retry_after"] = int(retry_after)
        return (payload, 429, headers)

    from .cli import register_cli
    register_cli(app)

    if not app.config.get("STRIPE_SECRET_KEY"):
        app.logger.warning("Stripe secret key missing; billing features will not work")

    return app
