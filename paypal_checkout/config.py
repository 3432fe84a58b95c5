import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

# Force-load .env (reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

SANDBOX_API_BASE = "https://api-m.sandbox.paypal.com"


class ConfigError(Exception):
    """Raised when a setting cannot be parsed."""


def _decimal(values: Mapping[str, str], key: str, default: str) -> Decimal:
    raw = values.get(key) or default
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ConfigError(f"{key} must be a decimal number, got '{raw}'") from exc


def _float(values: Mapping[str, str], key: str, default: str) -> float:
    raw = values.get(key) or default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got '{raw}'") from exc


def _bool(values: Mapping[str, str], key: str, default: str) -> bool:
    return (values.get(key) or default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    api_base: str = SANDBOX_API_BASE
    client_id: str = ""
    client_secret: str = ""
    webhook_id: str = ""
    token_safety_margin_seconds: float = 60.0
    http_timeout_seconds: float = 15.0
    risk_auto_approve_threshold: Decimal = Decimal("10.00")
    risk_review_ceiling: Decimal = Decimal("10000.00")
    jwt_secret: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "Settings":
        margin = _float(values, "PAYPAL_TOKEN_SAFETY_MARGIN_SECONDS", "60")
        if margin < 0:
            raise ConfigError("PAYPAL_TOKEN_SAFETY_MARGIN_SECONDS must not be negative")

        timeout = _float(values, "PAYPAL_HTTP_TIMEOUT_SECONDS", "15")
        if timeout <= 0:
            raise ConfigError("PAYPAL_HTTP_TIMEOUT_SECONDS must be greater than zero")

        threshold = _decimal(values, "RISK_AUTO_APPROVE_THRESHOLD", "10.00")
        ceiling = _decimal(values, "RISK_REVIEW_CEILING", "10000.00")
        if ceiling < threshold:
            raise ConfigError("RISK_REVIEW_CEILING must not be below RISK_AUTO_APPROVE_THRESHOLD")

        return cls(
            api_base=(values.get("PAYPAL_API_BASE") or SANDBOX_API_BASE).rstrip("/"),
            client_id=values.get("PAYPAL_CLIENT_ID", ""),
            client_secret=values.get("PAYPAL_CLIENT_SECRET", ""),
            webhook_id=values.get("PAYPAL_WEBHOOK_ID", ""),
            token_safety_margin_seconds=margin,
            http_timeout_seconds=timeout,
            risk_auto_approve_threshold=threshold,
            risk_review_ceiling=ceiling,
            jwt_secret=values.get("CHECKOUT_JWT_SECRET") or None,
            log_level=(values.get("LOG_LEVEL") or "INFO").upper(),
            log_json=_bool(values, "LOG_JSON", "true"),
        )

    @classmethod
    def from_env(cls) -> "Settings":
        return cls.from_mapping(os.environ)
