"""Application Configuration: environment-driven settings via pydantic-settings.

Invariants:
    - get_settings() is cached (lru_cache), single instance per process
    - Only the application factory reads settings; components get values injected

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env support
    - RESTCORE_ prefix keeps the core's knobs apart from the host application's
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from restcore import __version__


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="RESTCORE_", case_sensitive=False,
    )

    # Dispatch
    dispatch_timeout_ms: int = Field(1000, gt=0)
    handler_workers: int = Field(32, gt=0)

    # Representation
    default_cache_max_age: int = Field(60, ge=0)

    # Health resource
    service_name: str = "restcore"
    service_version: str = __version__

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
