"""
Application Configuration
=========================

Settings are read once from the environment (a local .env file is honoured).
Values that shape the optimizer and planner are handed to those components
explicitly through OptimizerConfig; nothing below is read from inside them.
"""

import os
from decimal import Decimal
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Settings:
    """Configuration for the fabrication service."""

    # Database connection settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./alufab.db")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "8"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "2"))

    # CORS
    CORS_ORIGINS: List[str] = _split_origins(os.getenv("CORS_ORIGINS", ""))

    # Cutting defaults (lengths are in the material's usage unit)
    DEFAULT_KERF: Decimal = Decimal(os.getenv("DEFAULT_KERF", "0"))
    DEFAULT_CUT_TOLERANCE: Decimal = Decimal(os.getenv("DEFAULT_CUT_TOLERANCE", "0.01"))
    OPTIMIZER_STRATEGY: str = os.getenv("OPTIMIZER_STRATEGY", "best_fit")
    CP_SAT_TIME_LIMIT_SECONDS: float = float(os.getenv("CP_SAT_TIME_LIMIT_SECONDS", "10"))
    CP_SAT_MAX_CUTS: int = int(os.getenv("CP_SAT_MAX_CUTS", "60"))

    # Commit concurrency
    STOCK_LOCK_TIMEOUT_SECONDS: float = float(os.getenv("STOCK_LOCK_TIMEOUT_SECONDS", "5"))

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def is_sqlite(cls) -> bool:
        return cls.DATABASE_URL.startswith("sqlite")


settings = Settings()
