import logging
import os
from datetime import timedelta
from pathlib import Path

from flask import Flask, jsonify, request
from supabase import create_client
from werkzeug.exceptions import HTTPException

from blindbox.routes import blindbox_bp
from chains import chains_bp
from chains.service import SHARE_QUERY_PARAM
from errors import StarWishError
from extensions import db, session_changed
from i18n import LANGUAGE_COOKIE, current_language, normalize_language, translate
from identity.migration import on_session_changed
from identity.routes import session_bp
from identity.session import current_session
from wishes import wishes_bp


# ====== Feature toggle ======
def _env_flag(name: str, default: bool) -> bool:
    """Parse truthy feature-toggle values from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        logging.getLogger(__name__).warning(
            "Invalid %s value: %r. Using default %s.", name, raw, default
        )
        return default


USE_SUPABASE = _env_flag("USE_SUPABASE", True)  # Supabase for auth + tables; SQLite fallback otherwise

# ====== Supabase setup ======
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY")

# ====== Sharing ======
SHARE_CODE_MAX_ATTEMPTS = _env_int("SHARE_CODE_MAX_ATTEMPTS", 5, 1)
SHARE_TRACKER_LIMIT = _env_int("SHARE_TRACKER_LIMIT", 256, 1)
LANGUAGE_COOKIE_MAX_AGE = int(timedelta(days=365).total_seconds())


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("STARWISH_SECRET_KEY") or os.urandom(24)
    app.permanent_session_lifetime = timedelta(days=365)

    data_dir = Path(app.root_path) / "data"
    app.config.setdefault("USE_SUPABASE", USE_SUPABASE)
    app.config.setdefault("SHARE_CODE_MAX_ATTEMPTS", SHARE_CODE_MAX_ATTEMPTS)
    app.config.setdefault("SHARE_TRACKER_LIMIT", SHARE_TRACKER_LIMIT)
    app.config.setdefault("STARWISH_PUBLIC_ORIGIN", os.environ.get("STARWISH_PUBLIC_ORIGIN"))
    app.config.setdefault("IP_HASH_SALT", os.environ.get("IP_HASH_SALT", ""))
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    app.config.setdefault(
        "SQLALCHEMY_DATABASE_URI",
        os.environ.get("STARWISH_DATABASE_URI") or f"sqlite:///{data_dir / 'starwish.db'}",
    )
    if overrides:
        app.config.update(overrides)

    app.logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith(f"sqlite:///{data_dir}"):
        data_dir.mkdir(parents=True, exist_ok=True)

    if "SUPABASE_CLIENT" not in app.config:
        app.config["SUPABASE_CLIENT"] = _init_supabase(app)

    db.init_app(app)
    with app.app_context():
        db.create_all()

    app.register_blueprint(session_bp)
    app.register_blueprint(wishes_bp)
    app.register_blueprint(chains_bp)
    app.register_blueprint(blindbox_bp)

    session_changed.connect(on_session_changed, sender=app)

    _register_error_handlers(app)
    _register_shell_routes(app)
    return app


def _init_supabase(app: Flask):
    if not (app.config.get("USE_SUPABASE") and SUPABASE_URL and SUPABASE_KEY):
        app.logger.info("Supabase disabled; using local tables at %s", app.config["SQLALCHEMY_DATABASE_URI"])
        return None
    try:
        return create_client(SUPABASE_URL, SUPABASE_KEY)
    except Exception as exc:
        app.logger.warning("Could not init Supabase client: %s", exc)
        return None


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(StarWishError)
    def handle_starwish_error(err: StarWishError):
        payload = dict(err.payload)
        payload.setdefault("error", err.code)
        payload["message"] = translate(err.message_key)
        payload["detail"] = str(err)
        payload["action"] = err.action
        return jsonify(payload), err.status_code

    @app.errorhandler(404)
    @app.errorhandler(405)
    @app.errorhandler(500)
    def handle_http_error(err: HTTPException):
        status_code = getattr(err, "code", 500) or 500
        if status_code >= 500:
            app.logger.error("Unhandled error: %s", getattr(err, "original_exception", err))
        key = "errors.notFound" if status_code == 404 else "errors.generic"
        return (
            jsonify({"error": f"http_{status_code}", "message": translate(key), "action": "go_back"}),
            status_code,
        )


def _register_shell_routes(app: Flask) -> None:
    @app.get("/")
    def shell():
        share_code = (request.args.get(SHARE_QUERY_PARAM) or "").strip()
        return jsonify(
            {
                "app": "StarWish",
                "view": "blindbox" if share_code else "landing",
                "share_code": share_code.upper() or None,
                "language": current_language(),
                "session": current_session().to_public_dict(),
            }
        )

    @app.get("/api/language")
    def get_language():
        return jsonify({"language": current_language()})

    @app.post("/api/language")
    def set_language():
        payload = request.get_json(silent=True) or {}
        language = normalize_language(payload.get("language"))
        if not language:
            return jsonify({"error": "invalid_language", "message": translate("errors.validation")}), 400
        response = jsonify({"language": language})
        response.set_cookie(
            LANGUAGE_COOKIE,
            language,
            max_age=LANGUAGE_COOKIE_MAX_AGE,
            samesite="Lax",
        )
        return response


if __name__ == "__main__":
    create_app().run(
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "5000")),
        debug=_env_flag("FLASK_DEBUG", False),
    )
