"""Configuration loaded from environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

SEARCH_PROVIDER_ID = "gemini-search"
CHAT_PROVIDER_ID = "groq-chat"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Runtime settings for the bot and its background jobs."""

    telegram_token: str | None = None
    groq_api_key: str | None = None
    gemini_api_key: str | None = None
    groq_model: str = "llama-3.1-8b-instant"
    gemini_model: str = "gemini-2.5-flash"
    search_quota: int = 500
    ai_quota: int = 200
    quota_period_seconds: float = 24 * 60 * 60
    cache_ttl_seconds: float = 60 * 60
    max_history: int = 20
    memory_ttl_seconds: float = 365 * 24 * 60 * 60
    batch_capacity: int = 10
    checkin_enabled: bool = False
    checkin_window_seconds: float = 5 * 60
    checkin_interval_seconds: float = 24 * 60 * 60
    db_path: Path | None = None
    log_dir: Path | None = None
    port: int = 3000
    webhook_path: str = "/new-message"

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = Path.home() / ".cody" / "cody.db"
        if self.log_dir is None:
            self.log_dir = Path.home() / ".cody" / "logs"

    @property
    def quotas(self) -> dict[str, int]:
        """Daily ceiling per provider id, in fallback order."""
        return {
            SEARCH_PROVIDER_ID: self.search_quota,
            CHAT_PROVIDER_ID: self.ai_quota,
        }

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        """Build settings from the environment (and a .env file if present)."""
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True))

        db_path = os.getenv("CODY_DB_PATH")
        log_dir = os.getenv("CODY_LOG_DIR")

        return cls(
            telegram_token=os.getenv("TELEGRAM_TOKEN") or os.getenv("TELEGRAM_BOT_TOKEN"),
            groq_api_key=os.getenv("GROQ_API_KEY"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            groq_model=os.getenv("GROQ_MODEL", "llama-3.1-8b-instant"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            search_quota=int(os.getenv("SEARCH_QUOTA", "500")),
            ai_quota=int(os.getenv("AI_QUOTA", "200")),
            quota_period_seconds=float(os.getenv("QUOTA_PERIOD_SECONDS", "86400")),
            cache_ttl_seconds=float(os.getenv("CACHE_TTL_SECONDS", "3600")),
            max_history=int(os.getenv("MAX_HISTORY", "20")),
            memory_ttl_seconds=float(os.getenv("MEMORY_TTL_SECONDS", "31536000")),
            batch_capacity=int(os.getenv("BATCH_CAPACITY", "10")),
            checkin_enabled=_env_bool("CHECKIN_ENABLED", False),
            checkin_window_seconds=float(os.getenv("CHECKIN_WINDOW_SECONDS", "300")),
            checkin_interval_seconds=float(
                os.getenv("CHECKIN_INTERVAL_SECONDS", "86400")
            ),
            db_path=Path(db_path) if db_path else None,
            log_dir=Path(log_dir) if log_dir else None,
            port=int(os.getenv("PORT", "3000")),
            webhook_path=os.getenv("WEBHOOK_PATH", "/new-message"),
        )
