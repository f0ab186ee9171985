from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    secret_key: str = "change-me"

    database_url: str = "sqlite:///./spendtrail.db"
    sqlite_busy_timeout_seconds: float = 15.0

    init_admin_email: str | None = None
    init_admin_password: str | None = None

    access_token_exp_minutes: int = 60 * 24

    default_currency: str = "USD"

    # Lifecycle rules
    require_receipt_for_submit: bool = True
    allow_self_approval: bool = False
    card_reconciled_status: Literal["submitted", "approved"] = "submitted"

    # Extraction heuristics
    total_largest_amount_fallback: bool = True
    merchant_scan_lines: int = 5
    pdf_raster_scale: float = 2.0
    tesseract_lang: str = "eng"

    # Advisory policy limits
    meal_daily_limit: Decimal = Decimal("75")
    lodging_nightly_limit: Decimal = Decimal("200")


settings = Settings()
