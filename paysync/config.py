"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DEFAULT_DB = DATA_DIR / "paysync.db"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)


class Config:
    """Application configuration."""

    # Storage
    DB_PATH: Path = Path(os.getenv("DB_PATH", str(DEFAULT_DB)))
    OUTCOME_LOG: Path = Path(os.getenv("OUTCOME_LOG", str(DATA_DIR / "outcomes.jsonl")))

    # Transport
    TIMEOUT: int = int(os.getenv("TIMEOUT", "20"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    USER_AGENT: str = os.getenv(
        "USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    )

    # Pacing between requests
    ITEM_DELAY_MIN_MS: int = int(os.getenv("ITEM_DELAY_MIN_MS", "100"))
    ITEM_DELAY_MAX_MS: int = int(os.getenv("ITEM_DELAY_MAX_MS", "300"))
    PAGE_DELAY_SECONDS: float = float(os.getenv("PAGE_DELAY_SECONDS", "1.0"))

    # Supabase mirror (optional)
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str | None = os.getenv("SUPABASE_SERVICE_ROLE")
    SUPABASE_PAYMENTS_TABLE: str = os.getenv("SUPABASE_PAYMENTS_TABLE", "unified_payments")
    SUPABASE_ITEMS_TABLE: str = os.getenv("SUPABASE_ITEMS_TABLE", "unified_payment_items")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Security
    API_KEY: str | None = os.getenv("API_KEY")

    @classmethod
    def validate(cls, require_supabase: bool = False) -> None:
        """Validate required configuration."""
        errors = []
        if require_supabase:
            if not cls.SUPABASE_URL:
                errors.append("SUPABASE_URL is required")
            if not cls.SUPABASE_SERVICE_ROLE:
                errors.append("SUPABASE_SERVICE_ROLE is required")
        if cls.ITEM_DELAY_MIN_MS < 0 or cls.ITEM_DELAY_MAX_MS < cls.ITEM_DELAY_MIN_MS:
            errors.append("ITEM_DELAY_MIN_MS/ITEM_DELAY_MAX_MS must form a valid range")
        if cls.PAGE_DELAY_SECONDS < 0:
            errors.append("PAGE_DELAY_SECONDS must be >= 0")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


config = Config()
