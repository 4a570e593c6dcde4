import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        generation_hour: int,
        generation_minute: int,
        safety_net_hours: int,
        scheduler_enabled: bool,
        strict_recurrence: bool,
        cors_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.generation_hour = generation_hour
        self.generation_minute = generation_minute
        self.safety_net_hours = safety_net_hours
        self.scheduler_enabled = scheduler_enabled
        self.strict_recurrence = strict_recurrence
        self.cors_origins = cors_origins


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    generation_hour = int(os.getenv("EXPENSES_GENERATION_HOUR", "2"))
    generation_minute = int(os.getenv("EXPENSES_GENERATION_MINUTE", "0"))
    safety_net_hours = int(os.getenv("EXPENSES_SAFETY_NET_HOURS", "1"))
    cors_raw = os.getenv("EXPENSES_CORS_ORIGINS", "http://localhost:3000")
    cors_origins = [origin.strip() for origin in cors_raw.split(",") if origin.strip()]
    return Settings(
        database_url=database_url,
        timezone=timezone,
        generation_hour=generation_hour,
        generation_minute=generation_minute,
        safety_net_hours=safety_net_hours,
        scheduler_enabled=_env_flag("EXPENSES_SCHEDULER_ENABLED", True),
        strict_recurrence=_env_flag("EXPENSES_STRICT_RECURRENCE", False),
        cors_origins=cors_origins,
    )
