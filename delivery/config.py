import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
import json
from typing import Optional


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    jwt_secret: str
    log_level: str
    currency: str
    tax_rate: Decimal
    service_fee_rate: Decimal
    gateway_base_url: str
    gateway_secret_key: str
    webhook_secret: str
    webhook_tolerance_seconds: int


def validate_currency(value: Optional[str]) -> str:
    v = (value or "USD").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def validate_rate(value, field: str, default: str) -> Decimal:
    raw = default if value in (None, "") else value
    try:
        rate = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"{field} must be a decimal number")
    if rate < 0 or rate >= 1:
        raise ValueError(f"{field} must be between 0 and 1")
    return rate


def _load_settings_file() -> dict:
    path = Path(__file__).resolve().parents[1] / "data" / "settings.json"
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}


def load_env() -> AppConfig:
    # data/settings.json wins, environment variables are the fallback
    s = _load_settings_file()

    def pick(key: str, default=None):
        return s.get(key) or os.getenv(key) or default

    return AppConfig(
        database_url=pick("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=pick("SECRET_KEY", "dev_secret"),
        jwt_secret=pick("JWT_SECRET", "dev_jwt_secret"),
        log_level=pick("LOG_LEVEL", "INFO"),
        currency=validate_currency(pick("CURRENCY")),
        tax_rate=validate_rate(pick("TAX_RATE"), "TAX_RATE", "0.08"),
        service_fee_rate=validate_rate(pick("SERVICE_FEE_RATE"), "SERVICE_FEE_RATE", "0.02"),
        gateway_base_url=pick("STRIPE_API_BASE", "https://api.stripe.com/v1").rstrip("/"),
        gateway_secret_key=pick("STRIPE_SECRET_KEY", ""),
        webhook_secret=pick("STRIPE_WEBHOOK_SECRET", ""),
        webhook_tolerance_seconds=int(pick("STRIPE_WEBHOOK_TOLERANCE", 300)),
    )

