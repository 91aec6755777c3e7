"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Callable, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .models import JellyfinInstance

PosterMode = Literal["none", "local", "remote"]

DEFAULT_ENABLED_FIELDS: tuple[str, ...] = (
    "File Name",
    "Poster",
    "Year",
    "Directors",
    "Cast",
    "Overview",
    "Genres",
    "Runtime",
    "Rating",
    "Seasons",
    "Episodes",
)


def _split_csv(
    value: object,
    *,
    setting: str,
    normalise: Callable[[str], str] = str.strip,
) -> list[str]:
    if isinstance(value, str):
        raw_values = [normalise(part) for part in value.split(",")]
    elif isinstance(value, Iterable):
        raw_values = [normalise(str(part)) for part in value]
    else:
        raise TypeError(f"{setting} must be a string or iterable of strings")
    cleaned: list[str] = []
    for entry in raw_values:
        if entry and entry not in cleaned:
            cleaned.append(entry)
    return cleaned


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ShowSync", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    streaming_api_key: str = Field(default="", alias="STREAMING_API_KEY")
    streaming_api_url: HttpUrl = Field(
        default="https://streaming-availability.p.rapidapi.com",
        alias="STREAMING_API_URL",
        validate_default=True,
    )
    streaming_api_host: str | None = Field(default=None, alias="STREAMING_API_HOST")
    country: str = Field(default="us", alias="COUNTRY", min_length=2, max_length=2)

    max_requests_per_second: float = Field(
        default=10.0, alias="MAX_REQUESTS_PER_SECOND", gt=0, le=100
    )
    rate_limit_warning_threshold: int = Field(
        default=80, alias="RATE_LIMIT_WARNING_THRESHOLD", ge=0, le=100
    )
    catalog_cache_days: int = Field(default=7, alias="CATALOG_CACHE_DAYS", ge=1)

    note_name_format: str = Field(default="${title} (${year})", alias="NOTE_NAME_FORMAT")
    note_name_format_series: str = Field(
        default="${title} (${firstAirYear}-${lastAirYear})",
        alias="NOTE_NAME_FORMAT_SERIES",
    )

    poster_mode: PosterMode = Field(default="remote", alias="POSTER_MODE")
    poster_folder: str = Field(default="posters", alias="POSTER_FOLDER")
    asset_root: str = Field(default="./assets", alias="ASSET_ROOT")
    add_streaming_links: bool = Field(default=False, alias="ADD_STREAMING_LINKS")

    streaming_services: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), alias="STREAMING_SERVICES"
    )
    jellyfin_instances: list[JellyfinInstance] = Field(
        default_factory=list, alias="JELLYFIN_INSTANCES"
    )
    jellyfin_cache_seconds: int = Field(
        default=300, alias="JELLYFIN_CACHE_SECONDS", ge=0
    )

    default_enabled_fields: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_ENABLED_FIELDS, alias="DEFAULT_ENABLED_FIELDS"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./showsync.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("streaming_services", mode="before")
    @classmethod
    def _parse_streaming_services(cls, value: object) -> tuple[str, ...]:
        """Normalise service ids, e.g. ``"netflix, prime"``."""

        if value is None:
            return ()
        return tuple(
            _split_csv(
                value,
                setting="STREAMING_SERVICES",
                normalise=lambda entry: entry.strip().lower(),
            )
        )

    @field_validator("default_enabled_fields", mode="before")
    @classmethod
    def _parse_enabled_fields(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return DEFAULT_ENABLED_FIELDS
        return tuple(_split_csv(value, setting="DEFAULT_ENABLED_FIELDS"))

    @field_validator("country", mode="before")
    @classmethod
    def _normalise_country(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("streaming_api_key", mode="before")
    @classmethod
    def _strip_api_key(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def streaming_api_host_header(self) -> str:
        """Return the RapidAPI host header, derived from the URL when unset."""

        if self.streaming_api_host:
            return self.streaming_api_host
        return self.streaming_api_url.host or ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
