"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_settings()``
startup gate for values that parse but make no business sense.

IMPORTANT: This module has ZERO imports from the ``freight`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # -- Storage ---------------------------------------------------------------
    database_path: Path = Path("data/freight.db")

    # -- Pricing ---------------------------------------------------------------
    default_margin_percent: Decimal = Decimal("10")
    max_margin_percent: Decimal = Decimal("50")

    # -- Invoicing -------------------------------------------------------------
    default_tax_percent: Decimal = Decimal("18")
    payment_terms_days: int = 30


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_settings(settings: Settings) -> None:
    """Enforce sane business settings at startup.

    In **production** mode the application exits with an error block if any
    check fails.  In **development** mode each problem is logged as a
    warning and startup continues.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not Decimal("0") <= settings.max_margin_percent <= Decimal("100"):
        errors.append(f"MAX_MARGIN_PERCENT must be between 0 and 100, got {settings.max_margin_percent}")
    if not Decimal("0") <= settings.default_margin_percent <= settings.max_margin_percent:
        errors.append(
            f"DEFAULT_MARGIN_PERCENT must be between 0 and MAX_MARGIN_PERCENT, "
            f"got {settings.default_margin_percent}"
        )
    if not Decimal("0") <= settings.default_tax_percent <= Decimal("100"):
        errors.append(f"DEFAULT_TAX_PERCENT must be between 0 and 100, got {settings.default_tax_percent}")
    if settings.payment_terms_days <= 0:
        errors.append(f"PAYMENT_TERMS_DAYS must be positive, got {settings.payment_terms_days}")

    if not errors:
        logger.info("settings_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("setting_invalid", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Invalid settings for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("setting_invalid_dev", detail=err)
