"""
Environment configuration for the tracker API.

Values come from the process environment, optionally seeded from a ``.env``
file, and are frozen into a Settings record on first use.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATA_DIR = Path(__file__).parent.parent.parent / "data"


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    encryption_key: Optional[str] = None
    log_level: str = "INFO"
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: str = "http://localhost:3001"


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        data_dir=Path(os.getenv("TRACKER_DATA_DIR", str(DEFAULT_DATA_DIR))),
        cors_origins=_split_origins(os.getenv("CORS_ORIGINS", "http://localhost:5173")),
        encryption_key=os.getenv("ENCRYPTION_KEY") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        langfuse_public_key=os.getenv("LANGFUSE_PUBLIC_KEY") or None,
        langfuse_secret_key=os.getenv("LANGFUSE_SECRET_KEY") or None,
        langfuse_host=os.getenv("LANGFUSE_HOST", "http://localhost:3001"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once at app startup."""
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
