# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar, Dict, Any
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

# Default coupon rule table, replaceable through the COUPONS env variable (JSON)
DEFAULT_COUPONS: Dict[str, Dict[str, Any]] = {
    "WELCOME10": {"discount": 10, "type": "percentage", "min_purchase": 50},
    "SUMMER20": {"discount": 20, "type": "percentage", "min_purchase": 100},
    "BLACKFRIDAY30": {"discount": 30, "type": "percentage", "min_purchase": 200},
    "FREESHIP": {"discount": 10, "type": "fixed", "min_purchase": 50},
}

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./database_mobileshop.db"
    LOG_LEVEL: str = "INFO"

    FRONTEND_URL: str = "http://localhost:3000"

    # Stripe-compatible payment gateway
    PAYMENT_API_URL: str = "https://api.stripe.com"
    PAYMENT_SECRET_KEY: str = ""
    PAYMENT_WEBHOOK_SECRET: str = ""
    PAYMENT_TIMEOUT_SECONDS: float = 10.0

    # Pricing policy
    CURRENCY: str = "USD"
    TAX_RATE: float = 0.08
    SHIPPING_FEE: float = 10.0
    FREE_SHIPPING_THRESHOLD: float = 100.0
    COUPON_TTL_DAYS: int = 30
    COUPONS: Dict[str, Dict[str, Any]] = DEFAULT_COUPONS

    # Outgoing mail; notifications are only logged when SMTP_HOST is empty
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM: str = "orders@mobileshop.local"

    class Config:
        env_file: ClassVar[str] = str(env_path)

settings = Settings()
