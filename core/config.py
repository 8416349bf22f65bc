from decimal import Decimal

from pydantic import BaseModel
from dotenv import load_dotenv
import os

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings(BaseModel):
    APP_NAME: str = os.getenv("APP_NAME", "KishansKraft")
    DEBUG: bool = _flag("DEBUG")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")

    CORS_ALLOW_ORIGINS: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret")
    SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "storefront_session")
    SESSION_TIMEOUT_HOURS: int = int(os.getenv("SESSION_TIMEOUT_HOURS", "24"))
    SESSION_COOKIE_SECURE: bool = _flag("SESSION_COOKIE_SECURE")

    OTP_LENGTH: int = int(os.getenv("OTP_LENGTH", "6"))
    OTP_EXPIRY_MINUTES: int = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))
    OTP_RATE_LIMIT: int = int(os.getenv("OTP_RATE_LIMIT", "5"))
    OTP_RATE_WINDOW_SECONDS: int = int(os.getenv("OTP_RATE_WINDOW_SECONDS", "3600"))
    OTP_CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("OTP_CLEANUP_INTERVAL_SECONDS", "86400"))

    API_RATE_LIMIT: int = int(os.getenv("API_RATE_LIMIT", "1000"))
    API_RATE_WINDOW_SECONDS: int = int(os.getenv("API_RATE_WINDOW_SECONDS", "3600"))

    # business rules, all amounts in INR
    MIN_ORDER_AMOUNT: Decimal = Decimal(os.getenv("MIN_ORDER_AMOUNT", "100"))
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "1000"))
    SHIPPING_CHARGES: Decimal = Decimal(os.getenv("SHIPPING_CHARGES", "50"))
    COD_CHARGES: Decimal = Decimal(os.getenv("COD_CHARGES", "30"))
    ORDER_NUMBER_PREFIX: str = os.getenv("ORDER_NUMBER_PREFIX", "KK")
    CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "₹")

    SMS_API_KEY: str = os.getenv("SMS_API_KEY", "")
    SMS_SENDER_ID: str = os.getenv("SMS_SENDER_ID", "KSKRFT")
    SMS_API_URL: str = os.getenv("SMS_API_URL", "https://api.textlocal.in/send/")
    SMS_STATUS_URL: str = os.getenv("SMS_STATUS_URL", "https://api.textlocal.in/status_message/")

    SMTP_HOST: str = os.getenv("SMTP_HOST", "")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS: bool = _flag("SMTP_USE_TLS", "true")
    FROM_EMAIL: str = os.getenv("FROM_EMAIL", "noreply@kishanskraft.com")
    FROM_NAME: str = os.getenv("FROM_NAME", "KishansKraft")
    COMPANY_EMAIL: str = os.getenv("COMPANY_EMAIL", "info@kishanskraft.com")

DEFAULT_COUNTRY: str = os.getenv("DEFAULT_COUNTRY", "IN")

settings = Settings()


def get_settings() -> Settings:
    return settings
