from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    journal_db_path: str = Field(default="data/journal.db", description="SQLite journal database path")
    store_timeout: float = Field(default=10.0, description="SQLite busy timeout in seconds")

    per_trade_risk_cap: float = Field(default=3.0, description="Maximum risk per trade (% of capital)")
    daily_risk_cap: float = Field(default=5.0, description="Maximum summed risk per entry day (% of capital)")
    max_trades_per_day: int = Field(default=3, description="Maximum trades entered on one day")
    max_active_per_day: int = Field(default=2, description="Maximum open/active trades entered on one day")
    max_cancel_per_day: int = Field(default=1, description="Maximum cancelled trades entered on one day")
    default_risk_percent: float = Field(default=2.0, description="Risk pre-selected for new drafts")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/journal.log", description="Log file path (empty disables file logging)")
    log_format: str = Field(default="json", description="Event log rendering: json or console")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings
