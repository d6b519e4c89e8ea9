"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Persistent base path shared with main.py (logs, ledger file, reports)
APP_BASE_PATH = Path(os.environ.get(
    "CONCILIACAO_BASE_PATH",
    os.environ.get("APP_BASE_PATH", Path.home() / "Documents" / "conciliacao")
))
ENV_FILE_PATH = APP_BASE_PATH / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Storage
    data_dir: Path = Field(default=APP_BASE_PATH / "data")
    ledger_file: Optional[Path] = Field(default=None)
    reports_dir: Path = Field(default=APP_BASE_PATH / "data" / "reports")

    # Parsing
    default_locale: str = Field(default="pt_BR")

    # Balance check
    balance_tolerance_cents: int = Field(default=1)
    rule_tolerance_percent: Decimal = Field(default=Decimal("0.01"))

    # Matching windows (days before the bank transaction date)
    inter_pag_window_days: int = Field(default=0)
    pix_inter_window_days: int = Field(default=0)
    ton_maquininha_window_days: int = Field(default=3)
    ton_link_window_days: int = Field(default=16)
    cremacao_window_days: int = Field(default=31)

    # Entries without a percentage rule block the commit unless this is set
    no_rule_fallback_classification: Optional[str] = Field(default=None)

    # Persistence
    persistence_timeout_seconds: float = Field(default=15.0)
    commit_retry_attempts: int = Field(default=3)
    commit_retry_wait_seconds: float = Field(default=0.5)

    # Audit
    export_audit_log: bool = Field(default=False)

    @property
    def ledger_path(self) -> Path:
        """Location of the flat-file ledger used by JsonFileLedgerStore."""
        return self.ledger_file or (self.data_dir / "ledger.json")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
