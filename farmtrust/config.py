# config.py
import os
from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Config:
    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///farmtrust.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JSON_AS_ASCII = False
    SECRET_KEY = os.getenv("FLASK_SECRET", "farmtrust-dev-secret")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # JWT / cookie auth
    JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
    JWT_ALGO = os.getenv("JWT_ALGO", "HS256")
    JWT_EXP_HOURS = int(os.getenv("JWT_EXP_HOURS", "6"))
    AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "auth_token")
    AUTH_COOKIE_SECURE = _bool("AUTH_COOKIE_SECURE")

    # Escrow rules
    CURRENCY = os.getenv("CURRENCY", "SLE")
    AUTO_RELEASE_DAYS = int(os.getenv("AUTO_RELEASE_DAYS", "3"))
    ESCROW_FEE_PCT = float(os.getenv("ESCROW_FEE_PCT", "1.5"))

    # Dispute priority thresholds (in CURRENCY)
    DISPUTE_HIGH_AMOUNT = float(os.getenv("DISPUTE_HIGH_AMOUNT", "1000"))
    DISPUTE_HIGH_REQUESTED_AMOUNT = float(os.getenv("DISPUTE_HIGH_REQUESTED_AMOUNT", "500"))

    # Mobile money merchant codes shown to buyers
    ORANGE_MONEY_MERCHANT_CODE = os.getenv("ORANGE_MONEY_MERCHANT_CODE", "FT-OM-0001")
    AFRIMONEY_MERCHANT_CODE = os.getenv("AFRIMONEY_MERCHANT_CODE", "FT-AM-0001")

    # Monime payment orchestration
    MONIME_BASE_URL = os.getenv("MONIME_BASE_URL", "https://api.monime.io")
    MONIME_API_KEY = os.getenv("MONIME_API_KEY", "")
    MONIME_SECRET_KEY = os.getenv("MONIME_SECRET_KEY", "")
    MONIME_SPACE_ID = os.getenv("MONIME_SPACE_ID", "")
    MONIME_TIMEOUT = float(os.getenv("MONIME_TIMEOUT", "6"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET = "test-secret"
    LOG_LEVEL = "WARNING"
    MONIME_API_KEY = ""
    MONIME_SECRET_KEY = "whsec-test"
    MONIME_SPACE_ID = ""
