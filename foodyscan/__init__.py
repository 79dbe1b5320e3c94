"""Flask application factory."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS
from sqlalchemy.pool import NullPool

from .extensions import db, mail
from .services.ai_service import AIService
from .services.chat_service import ChatService
from .services.food_analysis import FoodAnalysisService
from .services.nutrition_service import NutritionService
from .services.password_reset import PasswordResetService
from .services.payment_service import PaymentService
from .services.recommendation_service import RecommendationService
from .services.storage_service import StorageService
from .services.translation_service import TranslationService

CORS_ALLOWED_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


def _bool_from_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_env_value(*names: str):
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def _configure_logging() -> None:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)


def _database_uri(app: Flask) -> str:
    default_sqlite_path = Path(app.instance_path) / "nutrition.db"
    default_sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    database_uri = _get_env_value("LOCAL_DATABASE_URI", "DATABASE_URL") or f"sqlite:///{default_sqlite_path}"

    if database_uri.startswith("sqlite:///"):
        sqlite_path = database_uri.replace("sqlite:///", "", 1)
        Path(sqlite_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    sslmode = os.environ.get("DATABASE_SSLMODE")
    if sslmode and "sslmode=" not in database_uri:
        separator = "&" if "?" in database_uri else "?"
        database_uri = f"{database_uri}{separator}sslmode={sslmode}"
    return database_uri


def create_app() -> Flask:
    """Configure and return the Flask application."""

    load_dotenv()
    _configure_logging()

    app = Flask(__name__)

    # Services discover their own credentials from the environment so the app
    # boots without Supabase, Gemini, CalorieNinjas or Razorpay configured.
    app.storage_service = StorageService()
    app.ai_service = AIService()
    app.nutrition_service = NutritionService(app.ai_service)
    app.food_analysis_service = FoodAnalysisService(app.ai_service, app.nutrition_service, app.storage_service)
    app.chat_service = ChatService(app.ai_service, app.storage_service)
    app.translation_service = TranslationService(app.ai_service)
    app.recommendation_service = RecommendationService(app.ai_service)
    app.payment_service = PaymentService(app.storage_service)
    app.password_reset_service = PasswordResetService(app.storage_service)

    # --- CORS ------------------------------------------------------------
    origins = os.environ.get("CORS_ORIGINS", "*")
    allowed_origins = [origin.strip().rstrip("/") for origin in origins.split(",") if origin.strip()]
    CORS(
        app,
        resources={r"/api/*": {"origins": allowed_origins if origins != "*" else "*"}},
        allow_headers=CORS_ALLOWED_HEADERS,
    )

    # Reset links point at PASSWORD_RESET_URL unless the request comes from an
    # explicitly listed CORS origin. A wildcard never qualifies.
    app.config["PASSWORD_RESET_URL"] = os.environ.get("PASSWORD_RESET_URL", "http://localhost:5173")
    app.config["PASSWORD_RESET_ORIGINS"] = frozenset(
        origin for origin in allowed_origins if origin != "*"
    )

    # --- Mail ------------------------------------------------------------
    app.config.update(
        MAIL_SERVER=os.environ.get("MAIL_SERVER"),
        MAIL_PORT=int(os.environ.get("MAIL_PORT", "587")),
        MAIL_USE_TLS=_bool_from_env("MAIL_USE_TLS", True),
        MAIL_USE_SSL=_bool_from_env("MAIL_USE_SSL", False),
        MAIL_USERNAME=os.environ.get("MAIL_USERNAME"),
        MAIL_PASSWORD=os.environ.get("MAIL_PASSWORD"),
        MAIL_DEFAULT_SENDER=_get_env_value("MAIL_DEFAULT_SENDER", "MAIL_USERNAME") or "no-reply@foodyscan.app",
        MAIL_SUPPRESS_SEND=_bool_from_env("MAIL_SUPPRESS_SEND", False),
    )
    mail.init_app(app)

    # --- Nutrition reference database -------------------------------------
    app.config["SQLALCHEMY_DATABASE_URI"] = _database_uri(app)
    engine_options = {"pool_pre_ping": True}
    if _bool_from_env("VERCEL", False) or os.environ.get("VERCEL_ENV"):
        engine_options["poolclass"] = NullPool
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)

    # Ensure models are registered with SQLAlchemy before any table creation.
    from . import models  # noqa: F401

    db.init_app(app)

    with app.app_context():
        db.create_all()
        app.nutrition_service.seed_reference_foods()

    from .routes import api_bp

    app.register_blueprint(api_bp)

    return app
