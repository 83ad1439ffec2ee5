import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRO_PRICE_ID: str = "price_pro_monthly"
    STRIPE_PRO_YEARLY_PRICE_ID: Optional[str] = None
    STRIPE_API_VERSION: Optional[str] = "2024-06-20"

    # AI completion provider
    GROQ_API_KEY: Optional[str] = None
    AI_TEXT_MODEL: str = "llama-3.1-8b-instant"
    AI_VISION_MODEL: str = "meta-llama/llama-4-scout-17b-16e-instruct"

    # Outbound calls (seconds, applied to Stripe and Groq clients)
    PROVIDER_TIMEOUT_SECONDS: float = 20.0

    # App URLs
    FRONTEND_URL: str = "http://localhost:3000"

    # Quotas
    QUOTA_ENFORCEMENT: str = "strict"  # strict | advisory
    FREE_MONTHLY_CONVERSION_LIMIT: int = 10

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("scribe")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "GROQ_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.QUOTA_ENFORCEMENT not in ("strict", "advisory"):
        message = f"Unknown QUOTA_ENFORCEMENT mode: {cfg.QUOTA_ENFORCEMENT}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
