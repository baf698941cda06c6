from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ValidationError

PACKAGE_DIR = Path(__file__).resolve().parent

# Persisted file next to the package unless UKK_DB_PATH says otherwise
DEFAULT_DB_PATH = str(PACKAGE_DIR / "ukk_recap.sqlite")
DEFAULT_POLL_INTERVAL = 5.0

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    poll_interval: float = DEFAULT_POLL_INTERVAL
    super_admin_key: Optional[str] = None
    log_level: str = "INFO"

    def validate(self) -> "Settings":
        if not self.db_path:
            raise ValidationError("UKK_DB_PATH must not be empty.")
        if self.poll_interval <= 0:
            raise ValidationError(f"Poll interval must be positive, got {self.poll_interval}.")
        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ValidationError(f"Unknown log level '{self.log_level}'.")
        return self


def load_settings() -> Settings:
    load_dotenv(PACKAGE_DIR / ".env")

    raw_interval = os.environ.get("UKK_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL))
    try:
        poll_interval = float(raw_interval)
    except ValueError:
        raise ValidationError(f"UKK_POLL_INTERVAL is not a number: {raw_interval!r}.")

    settings = Settings(
        db_path=os.environ.get("UKK_DB_PATH", DEFAULT_DB_PATH),
        poll_interval=poll_interval,
        super_admin_key=os.environ.get("UKK_SUPER_ADMIN_KEY") or None,
        log_level=os.environ.get("UKK_LOG_LEVEL", "INFO"),
    )
    return settings.validate()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
