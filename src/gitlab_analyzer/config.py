from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    gitlab_url: str = "https://gitlab.com"
    gitlab_token: str = ""
    gitlab_timeout_seconds: float = 30.0
    gitlab_per_page: int = 100
    gitlab_max_retries: int = 3
    gitlab_backoff_seconds: float = 1.0
    gitlab_backoff_max_seconds: float = 60.0
    gitlab_page_delay_seconds: float = 0.2  # spacing between page fetches
    database_url: str = "sqlite:///./gitlab_analyzer.db"
    db_pool_size: int = 20
    db_max_retries: int = 2
    db_backoff_seconds: float = 0.5
    sync_stale_after_minutes: int = 60
    sync_interval_minutes: int = 60
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
