import os


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Config:
    # Base directory of the backend (one level above this package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, "instance")
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    _default_sqlite_path = os.path.join(INSTANCE_DIR, "tutorpay.db").replace("\\", "/")
    _db_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or f"sqlite:///{_default_sqlite_path}"
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(_db_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS: comma-separated origins for the web frontend
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    # Payment gateway (UddoktaPay-compatible checkout/verify API)
    UDDOKTAPAY_BASE_URL = os.getenv("UDDOKTAPAY_BASE_URL", "")
    UDDOKTAPAY_API_KEY = os.getenv("UDDOKTAPAY_API_KEY", "")
    UDDOKTAPAY_WEBHOOK_API_KEY = os.getenv("UDDOKTAPAY_WEBHOOK_API_KEY") or os.getenv("UDDOKTAPAY_API_KEY", "")
    GATEWAY_TIMEOUT_SECONDS = _float_env("GATEWAY_TIMEOUT_SECONDS", 30.0)

    PAYMENT_CURRENCY = (os.getenv("PAYMENT_CURRENCY") or "BDT").strip().upper()
    PAYMENT_INTENT_TTL_MINUTES = int(_float_env("PAYMENT_INTENT_TTL_MINUTES", 60))

    # Fallback when no platform_settings row exists yet
    PLATFORM_FEE_RATE = _float_env("PLATFORM_FEE_RATE", 0.0)
    PLATFORM_USER_ID = (os.getenv("PLATFORM_USER_ID") or "").strip()

    FRONTEND_URL = (os.getenv("FRONTEND_URL") or "http://localhost:3000").rstrip("/")
    BACKEND_URL = (os.getenv("BACKEND_URL") or "").rstrip("/")
