from __future__ import annotations

from functools import cache

from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.errors import MissingConfig

DEFAULT_DATABASE_URL = "sqlite:///capital_ledger.db"


class AppSettings(BaseSettings):
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL, validation_alias=AliasChoices("DATABASE_URL", "MONGODB_URI")
    )
    wyat_api_key: str | None = None
    frontend_origin: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )


@cache
def config() -> AppSettings:
    try:
        return AppSettings()
    except ValidationError as exc:
        name = ".".join(str(part) for part in exc.errors()[0]["loc"]) if exc.errors() else "settings"
        raise MissingConfig(name) from exc


def require_api_key(settings: AppSettings | None = None) -> str:
    settings = settings or config()
    if not settings.wyat_api_key:
        raise MissingConfig("WYAT_API_KEY")
    return settings.wyat_api_key


__all__ = ["AppSettings", "DEFAULT_DATABASE_URL", "config", "require_api_key"]
