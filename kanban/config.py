from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings read from the environment (or a ``.env`` file)."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    app_name: str = "Kanban API"
    version: str = "1.0.0"
    api_prefix: str = "/v1"

    # Storage
    storage_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///./kanban.db"

    # Mutations retried on optimistic version conflicts
    mutation_max_attempts: int = Field(default=3, ge=1)

    # Activity paging
    activity_page_size: int = Field(default=50, ge=1)
    activity_max_page_size: int = Field(default=200, ge=1)

    # Observability
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


@lru_cache
def get_settings() -> Settings:
    return Settings()
