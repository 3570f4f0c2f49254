from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    line_channel_access_token: str = ""
    line_channel_secret: str = ""
    line_api_base_url: str = "https://api.line.me"
    line_data_base_url: str = "https://api-data.line.me"
    line_timeout_seconds: int = Field(default=10, ge=2, le=60)
    line_media_timeout_seconds: int = Field(default=15, ge=2, le=120)
    line_max_retries: int = Field(default=2, ge=1, le=5)
    line_max_reply_chars: int = Field(default=2000, ge=100, le=5000)

    google_ai_api_key: str = ""
    google_ai_model: str = "gemini-2.5-flash"
    google_ai_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_seconds: int = Field(default=30, ge=5, le=120)
    gemini_max_retries: int = Field(default=2, ge=0, le=5)
    gemini_retry_base_delay_seconds: float = Field(default=0.4, ge=0.0, le=10)
    gemini_max_input_chars: int = Field(default=4000, ge=200, le=100_000)

    regime_check_enabled: bool = True
    strip_decision_payload: bool = True
    result_command_prefixes_csv: str = "#結果,#result"
    stats_command_prefixes_csv: str = "#統計,#stats"

    ledger_path: Path = Path("data/trades.json")
    ledger_lock_timeout_seconds: float = Field(default=10.0, ge=0.1, le=120)
    ledger_write_retries: int = Field(default=3, ge=1, le=10)
    stats_rolling_window: int = Field(default=30, ge=1, le=1000)

    max_consecutive_losses: int = Field(default=3, ge=1, le=50)
    max_daily_loss_r: float = Field(default=-3.0, le=0)
    risk_timezone: str = "UTC"
    risk_policy_path: Path = Path("config/risk_policy.yaml")

    history_max_turns: int = Field(default=6, ge=0, le=50)
    history_max_users: int = Field(default=500, ge=1, le=100_000)

    event_workers: int = Field(default=4, ge=1, le=64)
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=3000, ge=1, le=65535)
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @staticmethod
    def split_csv(value: str) -> list[str]:
        return [item.strip() for item in value.split(",") if item.strip()]


settings = Settings()
