"""Configuration management for libraryloans.

Loads configuration from environment variables and provides defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

DEFAULT_DB_PATH = Path.home() / ".libraryloans" / "library.db"


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path
    db_timeout: float  # seconds to wait on a locked database

    # Lending
    loan_days: int

    # Logging
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get("LIBRARY_DB_PATH", str(DEFAULT_DB_PATH))
        db_path = Path(db_path_str).expanduser() if db_path_str != ":memory:" else Path(db_path_str)

        return cls(
            db_path=db_path,
            db_timeout=float(os.environ.get("LIBRARY_DB_TIMEOUT", "30")),
            loan_days=int(os.environ.get("LIBRARY_LOAN_DAYS", "14")),
            log_level=os.environ.get("LIBRARY_LOG_LEVEL", "WARNING").upper(),
        )

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.is_memory and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        if self.loan_days < 1:
            errors.append(f"LIBRARY_LOAN_DAYS must be at least 1, got {self.loan_days}")

        if self.db_timeout <= 0:
            errors.append(f"LIBRARY_DB_TIMEOUT must be positive, got {self.db_timeout}")

        if not isinstance(logging.getLevelName(self.log_level), int):
            errors.append(f"Unknown LIBRARY_LOG_LEVEL: {self.log_level}")

        return errors


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
