"""Pydantic models describing titles, offers and availability."""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

MediaType = Literal["movie", "series"]

ALWAYS_ENABLED_FIELDS = frozenset({"Type", "tmdb_id"})
IDENTITY_FIELD = "tmdb_id"
TYPE_FIELD = "Type"

POSTER_SIZES = ("w240", "w360", "w480", "w600", "w720")


def _coerce_media_type(value: object) -> object:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"tv", "show", "series"}:
            return "series"
        if lowered == "movie":
            return "movie"
    return value


class TitleIdentity(BaseModel):
    """The ``(external_id, media_type)`` pair joining metadata and documents."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    media_type: MediaType

    @field_validator("external_id", mode="before")
    @classmethod
    def _normalise_external_id(cls, value: object) -> object:
        if isinstance(value, bool):
            raise ValueError("external_id must be a string or integer")
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            # Catalog responses use the ``movie/603`` form.
            cleaned = value.strip().rsplit("/", 1)[-1]
            if not cleaned:
                raise ValueError("external_id must not be empty")
            return cleaned
        return value

    @field_validator("media_type", mode="before")
    @classmethod
    def _normalise_media_type(cls, value: object) -> object:
        return _coerce_media_type(value)

    @property
    def api_path(self) -> str:
        """Return the ``movie/<id>`` or ``tv/<id>`` path used by the catalog."""

        prefix = "movie" if self.media_type == "movie" else "tv"
        return f"{prefix}/{self.external_id}"

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> "TitleIdentity | None":
        """Read the identity stored in a document's fields, if any."""

        external_id = fields.get(IDENTITY_FIELD)
        media_type = fields.get(TYPE_FIELD)
        if external_id in (None, "") or not media_type:
            return None
        try:
            return cls(external_id=external_id, media_type=media_type)
        except ValueError:
            return None


class ProviderOffer(BaseModel):
    """A single streaming offer for a title in one country."""

    model_config = ConfigDict(frozen=True)

    service_id: str
    service_name: str | None = None
    kind: str
    expires_on: int | None = None
    addon_id: str | None = None
    addon_name: str | None = None
    link: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "ProviderOffer":
        service = payload.get("service")
        if isinstance(service, Mapping):
            service_id = str(service.get("id") or "")
            service_name = service.get("name")
        else:
            service_id = str(service or "")
            service_name = None

        addon = payload.get("addon")
        if isinstance(addon, Mapping):
            addon_id = addon.get("id")
            addon_name = addon.get("name") or addon.get("displayName")
        else:
            addon_id = addon
            addon_name = None

        expires_on = payload.get("expiresOn")
        if expires_on is None:
            expires_on = payload.get("leaving")

        return cls(
            service_id=service_id,
            service_name=str(service_name) if service_name else None,
            kind=str(payload.get("type") or payload.get("streamingType") or ""),
            expires_on=int(expires_on) if expires_on else None,
            addon_id=str(addon_id) if addon_id else None,
            addon_name=str(addon_name) if addon_name else None,
            link=payload.get("link"),
            raw=dict(payload),
        )


class CanonicalMetadata(BaseModel):
    """Authoritative title record retrieved from the catalog source."""

    model_config = ConfigDict(frozen=True)

    identity: TitleIdentity
    title: str
    imdb_id: str | None = None
    release_year: int | None = None
    first_air_year: int | None = None
    last_air_year: int | None = None
    cast: tuple[str, ...] = ()
    directors: tuple[str, ...] = ()
    creators: tuple[str, ...] = ()
    overview: str = ""
    genres: tuple[str, ...] = ()
    runtime: int | None = None
    rating: int | float | None = None
    season_count: int | None = None
    episode_count: int | None = None
    posters: dict[str, str] = Field(default_factory=dict)
    streaming_options: dict[str, tuple[ProviderOffer, ...]] = Field(
        default_factory=dict
    )

    @property
    def year(self) -> int | None:
        return self.release_year or self.first_air_year

    def offers_for(self, country: str) -> tuple[ProviderOffer, ...]:
        return self.streaming_options.get(country.lower(), ())

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "CanonicalMetadata":
        """Build a metadata record from a catalog ``show`` payload."""

        media_type = payload.get("showType") or payload.get("type")
        identity = TitleIdentity(
            external_id=payload.get("tmdbId"), media_type=media_type
        )

        genres: list[str] = []
        for genre in payload.get("genres") or []:
            if isinstance(genre, Mapping):
                name = genre.get("name")
            else:
                name = genre
            if name:
                genres.append(str(name))

        image_set = payload.get("imageSet") or {}
        vertical = image_set.get("verticalPoster") or payload.get("posterURLs") or {}
        posters = {
            size: str(vertical[size])
            for size in POSTER_SIZES
            if isinstance(vertical, Mapping) and vertical.get(size)
        }

        raw_options = payload.get("streamingOptions") or payload.get("streamingInfo") or {}
        options: dict[str, tuple[ProviderOffer, ...]] = {}
        if isinstance(raw_options, Mapping):
            for country, offers in raw_options.items():
                if not isinstance(offers, list):
                    continue
                options[str(country).lower()] = tuple(
                    ProviderOffer.from_api(offer)
                    for offer in offers
                    if isinstance(offer, Mapping)
                )

        return cls(
            identity=identity,
            title=str(payload.get("title") or "").strip(),
            imdb_id=payload.get("imdbId"),
            release_year=payload.get("releaseYear") or payload.get("year"),
            first_air_year=payload.get("firstAirYear"),
            last_air_year=payload.get("lastAirYear"),
            cast=tuple(str(name) for name in payload.get("cast") or []),
            directors=tuple(str(name) for name in payload.get("directors") or []),
            creators=tuple(str(name) for name in payload.get("creators") or []),
            overview=html.unescape(str(payload.get("overview") or "")).strip(),
            genres=tuple(genres),
            runtime=payload.get("runtime"),
            rating=payload.get("rating"),
            season_count=payload.get("seasonCount"),
            episode_count=payload.get("episodeCount"),
            posters=posters,
            streaming_options=options,
        )


class StreamingService(BaseModel):
    """A streaming provider listed in a country's catalog."""

    id: str
    name: str
    home_page: str | None = None
    addons: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "StreamingService":
        addons: dict[str, str] = {}
        raw_addons = payload.get("addons") or {}
        if isinstance(raw_addons, Mapping):
            for addon_id, addon in raw_addons.items():
                if isinstance(addon, Mapping):
                    addons[str(addon_id)] = str(
                        addon.get("displayName") or addon.get("name") or addon_id
                    )
        elif isinstance(raw_addons, list):
            for addon in raw_addons:
                if isinstance(addon, Mapping) and addon.get("id"):
                    addons[str(addon["id"])] = str(addon.get("name") or addon["id"])
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or payload.get("id") or ""),
            home_page=payload.get("homePage"),
            addons=addons,
        )


class CountryCatalog(BaseModel):
    """Streaming services available in one country."""

    country_code: str
    name: str
    services: list[StreamingService] = Field(default_factory=list)

    @classmethod
    def from_api(cls, code: str, payload: Mapping[str, Any]) -> "CountryCatalog":
        raw_services = payload.get("services") or []
        if isinstance(raw_services, Mapping):
            raw_services = list(raw_services.values())
        services = [
            StreamingService.from_api(service)
            for service in raw_services
            if isinstance(service, Mapping)
        ]
        return cls(
            country_code=str(payload.get("countryCode") or code).lower(),
            name=str(payload.get("name") or code),
            services=services,
        )


class JellyfinInstance(BaseModel):
    """Connection details for a self-hosted Jellyfin server."""

    name: str
    url: str
    api_key: str = Field(default="", alias="apiKey")
    user_id: str = Field(default="", alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class ProviderAvailabilityResult(BaseModel):
    """Availability of a title on one media-server provider."""

    provider_name: str
    available: bool
    item_id: str | None = None
    watched: bool | None = None


@dataclass(slots=True)
class FieldChange:
    """A proposed change to one document field.

    ``Type`` and ``tmdb_id`` can never be disabled.
    """

    field: str
    old_value: str
    new_value: str
    enabled: bool = True
    is_asset_field: bool = False
    value: Any = None

    def __post_init__(self) -> None:
        if self.locked:
            self.enabled = True
        if self.value is None:
            self.value = self.new_value

    @property
    def locked(self) -> bool:
        return self.field in ALWAYS_ENABLED_FIELDS

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = True if self.locked else enabled

    def to_payload(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "enabled": self.enabled,
            "isAssetField": self.is_asset_field,
        }


@dataclass(slots=True)
class SyncPreview:
    """Everything a human needs to approve a document sync."""

    document: str
    metadata: CanonicalMetadata
    availability: list[ProviderAvailabilityResult]
    changes: list[FieldChange] = field(default_factory=list)

    @property
    def enabled_fields(self) -> list[str]:
        return [change.field for change in self.changes if change.enabled]
