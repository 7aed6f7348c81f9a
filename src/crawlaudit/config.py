from dotenv import load_dotenv
from dataclasses import dataclass
from typing import Optional
from pathlib import Path
import os

from crawlaudit.constants import (
    CRAWL_TIMEOUT_SECONDS,
    DYNAMIC_CONTENT_SETTLE_MS,
    MAX_RENDERER_INSTANCES,
    PER_BATCH_TIMEOUT_SECONDS,
    PER_PAGE_TIMEOUT_SECONDS,
)

load_dotenv()  # Loads variables from .env file


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError:
        return default  # Keep default if conversion fails


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    AXE_SCRIPT_PATH = os.getenv("AXE_SCRIPT_PATH")


settings = Settings()


@dataclass
class Config:
    """Configuration for the crawl service."""
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Storage
    public_dir: Path = Path("public")
    temp_dir: Path = Path("temp")

    # Renderer
    headless: bool = True
    pool_size: int = MAX_RENDERER_INSTANCES

    # Crawl time bounds (seconds, except settle delay)
    page_timeout_seconds: float = PER_PAGE_TIMEOUT_SECONDS
    batch_timeout_seconds: float = PER_BATCH_TIMEOUT_SECONDS
    crawl_timeout_seconds: float = CRAWL_TIMEOUT_SECONDS
    settle_delay_ms: int = DYNAMIC_CONTENT_SETTLE_MS

    # Accessibility engine
    axe_script_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration instance with values from environment
        """
        return cls(
            host=os.getenv("CRAWLAUDIT_HOST", "127.0.0.1"),
            port=_env_number("CRAWLAUDIT_PORT", 8000, int),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE"),
            public_dir=Path(os.getenv("CRAWLAUDIT_PUBLIC_DIR", "public")),
            temp_dir=Path(os.getenv("CRAWLAUDIT_TEMP_DIR", "temp")),
            headless=_env_bool("CRAWLAUDIT_HEADLESS", True),
            pool_size=_env_number("CRAWLAUDIT_POOL_SIZE", MAX_RENDERER_INSTANCES, int),
            page_timeout_seconds=_env_number(
                "CRAWLAUDIT_PAGE_TIMEOUT_SECONDS", PER_PAGE_TIMEOUT_SECONDS, float
            ),
            batch_timeout_seconds=_env_number(
                "CRAWLAUDIT_BATCH_TIMEOUT_SECONDS", PER_BATCH_TIMEOUT_SECONDS, float
            ),
            crawl_timeout_seconds=_env_number(
                "CRAWLAUDIT_CRAWL_TIMEOUT_SECONDS", CRAWL_TIMEOUT_SECONDS, float
            ),
            settle_delay_ms=_env_number(
                "CRAWLAUDIT_SETTLE_DELAY_MS", DYNAMIC_CONTENT_SETTLE_MS, int
            ),
            axe_script_path=os.getenv("AXE_SCRIPT_PATH"),
        )

