import os
from typing import Dict, Optional

from dotenv import load_dotenv
from flask import Flask, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from werkzeug.middleware.proxy_fix import ProxyFix

from .errors import register_error_handlers
from .mailer import Mailer
from .media import MediaConfig, build_media_store
from .products import products_bp
from .shops import shops_bp
from .store import ensure_indexes
from .users import users_bp

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name, str(default))
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return default


def load_media_config(app: Flask) -> MediaConfig:
    cloud_name = (os.getenv("CLOUDINARY_CLOUD_NAME") or "").strip()
    backend = (os.getenv("MEDIA_BACKEND") or "").strip().lower()
    if backend not in {"cloudinary", "local"}:
        backend = "cloudinary" if cloud_name else "local"

    return MediaConfig(
        backend=backend,
        cloud_name=cloud_name,
        api_key=(os.getenv("CLOUDINARY_API_KEY") or "").strip(),
        api_secret=(os.getenv("CLOUDINARY_API_SECRET") or "").strip(),
        upload_folder=app.config["MEDIA_UPLOAD_FOLDER"],
    )


def create_app(
    config_overrides: Optional[Dict] = None,
    *,
    database=None,
    media_store=None,
    mailer=None,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Honor proxy headers so cookies and upload URLs reflect the public HTTPS origin.
    trusted_proxy_hops = max(0, _int_env("TRUSTED_PROXY_HOPS", 1))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    app.config["ACTIVATION_SECRET"] = os.getenv("ACTIVATION_SECRET", "change-me-too")
    app.config["SESSION_TOKEN_EXPIRES_DAYS"] = _int_env("SESSION_TOKEN_EXPIRES_DAYS", 90)
    app.config["ACTIVATION_TOKEN_EXPIRES_MINUTES"] = _int_env(
        "ACTIVATION_TOKEN_EXPIRES_MINUTES", 10
    )
    app.config["PASSWORD_RESET_TOKEN_EXPIRES_MINUTES"] = _int_env(
        "PASSWORD_RESET_TOKEN_EXPIRES_MINUTES", 10
    )
    app.config["SESSION_COOKIE_SAMESITE"] = (
        os.getenv("SESSION_COOKIE_SAMESITE", "Strict").strip() or "Strict"
    )
    app.config["FRONTEND_URL"] = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/marketplace"
    )
    app.config["MAX_CONTENT_LENGTH"] = _int_env("MAX_UPLOAD_SIZE_MB", 16) * 1024 * 1024
    app.config["MEDIA_UPLOAD_FOLDER"] = os.getenv(
        "MEDIA_UPLOAD_FOLDER", os.path.join(app.root_path, "uploads")
    )
    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["MAIL_SENDER"] = os.getenv(
        "MAIL_SENDER", "Marketplace <no-reply@marketplace.local>"
    )
    if config_overrides:
        app.config.update(config_overrides)

    # --- Initialize extensions ---
    allowed_origins = [os.getenv("FRONTEND_URL", "").strip()]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    allowed_origins = [origin for origin in allowed_origins if origin]

    CORS(app, supports_credentials=True, origins=allowed_origins or "*")
    JWTManager(app)

    if database is None:
        database = PyMongo(app).db
    ensure_indexes(database, app.logger)

    media_config = load_media_config(app)
    app.extensions["marketplace"] = {
        "db": database,
        "media": media_store or build_media_store(media_config),
        "mailer": mailer or Mailer(app.config["RESEND_API_KEY"], app.config["MAIL_SENDER"]),
    }

    register_error_handlers(app)
    app.register_blueprint(users_bp, url_prefix="/api/v2/user")
    app.register_blueprint(shops_bp, url_prefix="/api/v2/shop")
    app.register_blueprint(products_bp, url_prefix="/api/v2/product")

    if not media_config.is_cloudinary:

        @app.route("/uploads/<path:filename>")
        def serve_uploaded_file(filename: str):
            return send_from_directory(app.config["MEDIA_UPLOAD_FOLDER"], filename)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app
