import os
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class Settings(BaseModel):
    database_url: str = Field(..., alias="DATABASE_URL")
    online_timeout_ms: int = Field(default=300_000, alias="HEALTH_MAX_TIMEOUT", ge=0)
    report_window: int = Field(default=1000, alias="REPORT_WINDOW", ge=1)
    api_access_key: Optional[str] = Field(default=None, alias="API_ACCESS_KEY")
    api_access_token: Optional[str] = Field(default=None, alias="API_ACCESS_TOKEN")
    dashboard_allowed_origins: List[str] = Field(default_factory=list, alias="DASHBOARD_ALLOWED_ORIGINS")
    environment: Literal["development", "production", "test"] = Field(default="development", alias="APP_ENV")

    @field_validator("api_access_key", "api_access_token", mode="before")
    @classmethod
    def blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def validate_credentials_pair(self) -> "Settings":
        if (self.api_access_key is None) != (self.api_access_token is None):
            raise ValueError("API_ACCESS_KEY and API_ACCESS_TOKEN must be set together")
        return self

    @property
    def credentials_enforced(self) -> bool:
        return self.api_access_key is not None and self.api_access_token is not None

    @staticmethod
    def _normalize_database_url(url: str) -> str:
        if url.startswith("postgres://"):
            return "postgresql+psycopg://" + url[len("postgres://") :]
        if url.startswith("postgresql://") and "+psycopg" not in url:
            return "postgresql+psycopg://" + url[len("postgresql://") :]
        return url

    @staticmethod
    def _parse_origins(raw_value: Optional[str]) -> List[str]:
        if raw_value in (None, ""):
            return []
        return [item.strip() for item in raw_value.split(",") if item.strip()]

    @staticmethod
    def _parse_int(name: str) -> Optional[int]:
        raw = os.getenv(name)
        if raw in (None, ""):
            return None
        try:
            return int(raw)
        except ValueError as err:
            raise ValueError(f"Invalid {name}: {raw!r}") from err

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            raw_origins = os.getenv("DASHBOARD_ALLOWED_ORIGINS") or os.getenv("DASHBOARD_ORIGIN")
            values = {
                "DATABASE_URL": cls._normalize_database_url(os.environ["DATABASE_URL"]),
                "API_ACCESS_KEY": os.getenv("API_ACCESS_KEY"),
                "API_ACCESS_TOKEN": os.getenv("API_ACCESS_TOKEN"),
                "DASHBOARD_ALLOWED_ORIGINS": cls._parse_origins(raw_origins),
                "APP_ENV": os.getenv("APP_ENV", "development").lower(),
            }
            for name in ("HEALTH_MAX_TIMEOUT", "REPORT_WINDOW"):
                parsed = cls._parse_int(name)
                if parsed is not None:
                    values[name] = parsed
            return cls(**values)
        except (ValidationError, ValueError) as err:
            raise RuntimeError(f"Configuration error: {err}") from err
        except KeyError as missing:
            raise RuntimeError(f"Missing required environment variable: {missing}") from missing


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings accessor so the app parses environment variables exactly once.
    """
    return Settings.from_env()
