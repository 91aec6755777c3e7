"""Field-level diffing between a document and freshly retrieved metadata."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from ..config import Settings
from ..models import (
    ALWAYS_ENABLED_FIELDS,
    IDENTITY_FIELD,
    TYPE_FIELD,
    CanonicalMetadata,
    FieldChange,
    ProviderAvailabilityResult,
    ProviderOffer,
    StreamingService,
)
from ..utils import format_expiry_date, render_note_name

logger = logging.getLogger(__name__)

EMPTY_VALUE = "(empty)"
NOT_AVAILABLE = "Not available"
FILE_NAME_FIELD = "File Name"
POSTER_FIELD = "Poster"
LIST_SEPARATOR = ", "
EXCLUDED_ADDON_PREFIX = "tvs.sbd"
SYNCABLE_OFFER_KINDS = frozenset({"subscription", "addon"})


def normalize_value(value: Any) -> str:
    """Return the comparison form of a field value."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        parts = (normalize_value(item) for item in value)
        return LIST_SEPARATOR.join(part for part in parts if part)
    return str(value).strip()


class OfferVariant(str, Enum):
    SUBSCRIPTION_WITH_EXPIRY = "subscription_with_expiry"
    SUBSCRIPTION_PLAIN = "subscription_plain"
    ADDON = "addon"
    UNRECOGNIZED = "unrecognized"


def classify_offer(offer: ProviderOffer) -> OfferVariant:
    if offer.kind == "subscription":
        if offer.expires_on:
            return OfferVariant.SUBSCRIPTION_WITH_EXPIRY
        return OfferVariant.SUBSCRIPTION_PLAIN
    if offer.kind == "addon":
        return OfferVariant.ADDON
    return OfferVariant.UNRECOGNIZED


def describe_offer(offer: ProviderOffer, service: StreamingService | None = None) -> str:
    """Render an offer as the text stored in the service's field.

    Unrecognized offers render their payload so API changes stay visible.
    """

    variant = classify_offer(offer)
    if variant is OfferVariant.SUBSCRIPTION_WITH_EXPIRY:
        return f"Available until {format_expiry_date(offer.expires_on or 0)}"
    if variant is OfferVariant.SUBSCRIPTION_PLAIN:
        return "Available"
    if variant is OfferVariant.ADDON:
        addon_name = offer.addon_name
        if not addon_name and service is not None and offer.addon_id:
            addon_name = service.addons.get(offer.addon_id)
        return f"Available with {addon_name or 'addon'}"
    return "Not available?" + json.dumps(offer.raw or offer.model_dump(), sort_keys=True, default=str)


def match_offer(
    offers: Iterable[ProviderOffer], service: StreamingService
) -> ProviderOffer | None:
    """Find the first syncable offer published by ``service``."""

    for offer in offers:
        if offer.addon_id and offer.addon_id.startswith(EXCLUDED_ADDON_PREFIX):
            continue
        if offer.kind not in SYNCABLE_OFFER_KINDS:
            continue
        if offer.service_id == service.id:
            return offer
    return None


def describe_provider(result: ProviderAvailabilityResult) -> str:
    if not result.available:
        return NOT_AVAILABLE
    if result.watched:
        return "Available (watched)"
    return "Available"


@dataclass(slots=True, frozen=True)
class FieldPolicy:
    """Which fields start out enabled for a sync."""

    enabled_fields: frozenset[str]
    streaming_service_names: frozenset[str] = frozenset()
    provider_names: frozenset[str] = frozenset()

    def is_enabled(self, field: str) -> bool:
        if field in ALWAYS_ENABLED_FIELDS:
            return True
        return (
            field in self.enabled_fields
            or field in self.streaming_service_names
            or field in self.provider_names
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        services: Sequence[StreamingService] = (),
    ) -> "FieldPolicy":
        link_fields = (
            {_link_field(service) for service in services}
            if settings.add_streaming_links
            else set()
        )
        return cls(
            enabled_fields=frozenset(settings.default_enabled_fields),
            streaming_service_names=frozenset(
                {service.name for service in services} | link_fields
            ),
            provider_names=frozenset(
                instance.name for instance in settings.jellyfin_instances
            ),
        )


def _link_field(service: StreamingService) -> str:
    return f"{service.name} Link"


class FieldReconciler:
    """Compute the ordered list of field changes for one document."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def compute_changes(
        self,
        current: Mapping[str, Any],
        proposed: CanonicalMetadata,
        availability: Sequence[ProviderAvailabilityResult],
        policy: FieldPolicy,
        *,
        services: Sequence[StreamingService] = (),
        current_name: str | None = None,
    ) -> list[FieldChange]:
        changes: list[FieldChange] = []

        def check(
            field: str,
            new_value: Any,
            *,
            old_value: Any = None,
            is_asset_field: bool = False,
        ) -> None:
            new_text = normalize_value(new_value)
            if not new_text:
                return
            old_text = normalize_value(
                current.get(field) if old_value is None else old_value
            )
            if old_text == new_text:
                return
            changes.append(
                FieldChange(
                    field=field,
                    old_value=old_text or EMPTY_VALUE,
                    new_value=new_text,
                    enabled=policy.is_enabled(field),
                    is_asset_field=is_asset_field,
                    value=new_value,
                )
            )

        if current_name is not None:
            check(
                FILE_NAME_FIELD,
                self.note_name(proposed),
                old_value=current_name,
            )

        check(TYPE_FIELD, proposed.identity.media_type)
        check("Year", proposed.year)
        check("Directors", list(proposed.directors))
        check("Cast", list(proposed.cast))
        check("Overview", proposed.overview)
        check("Genres", list(proposed.genres))

        poster = self.poster_value(proposed)
        if poster:
            check(POSTER_FIELD, poster, is_asset_field=True)

        if proposed.runtime:
            check("Runtime", f"{proposed.runtime} min")
        if proposed.rating:
            check("Rating", proposed.rating)
        if proposed.season_count:
            check("Seasons", proposed.season_count)
        if proposed.episode_count:
            check("Episodes", proposed.episode_count)

        offers = proposed.offers_for(self._settings.country)
        for service in services:
            offer = match_offer(offers, service)
            if offer is None:
                check(service.name, NOT_AVAILABLE)
                continue
            check(service.name, describe_offer(offer, service))
            if self._settings.add_streaming_links and offer.link:
                check(_link_field(service), offer.link)

        for result in availability:
            check(result.provider_name, describe_provider(result))

        identity_value: Any = proposed.identity.external_id
        if identity_value.isdigit():
            identity_value = int(identity_value)
        check(IDENTITY_FIELD, identity_value)

        logger.debug(
            "Computed %d field changes for %s", len(changes), proposed.identity.api_path
        )
        return changes

    def note_name(self, metadata: CanonicalMetadata) -> str:
        template = (
            self._settings.note_name_format
            if metadata.identity.media_type == "movie"
            else self._settings.note_name_format_series
        )
        if not template:
            return ""
        return render_note_name(template, metadata)

    def poster_value(self, metadata: CanonicalMetadata) -> str | None:
        """Return the Poster field value for the configured poster mode."""

        remote = metadata.posters.get("w480")
        if not remote or self._settings.poster_mode == "none":
            return None
        if self._settings.poster_mode == "local":
            return f"![[{self.poster_path(metadata)}]]"
        return remote

    def poster_path(self, metadata: CanonicalMetadata) -> str:
        folder = self._settings.poster_folder.strip("/")
        filename = f"{metadata.identity.external_id}.jpg"
        return f"{folder}/{filename}" if folder else filename


def build_field_updates(
    changes: Sequence[FieldChange],
    selected_fields: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Return the field map to write for the approved changes.

    ``selected_fields`` replaces the default enablement with a human's choice;
    ``Type`` and ``tmdb_id`` are always written. ``File Name`` is a rename and
    is never part of the map.
    """

    selected = set(selected_fields) if selected_fields is not None else None
    updates: dict[str, Any] = {}
    for change in changes:
        if change.field == FILE_NAME_FIELD:
            continue
        if change.locked or (
            change.enabled if selected is None else change.field in selected
        ):
            updates[change.field] = change.value
    return updates


def is_field_approved(
    changes: Sequence[FieldChange],
    field: str,
    selected_fields: Iterable[str] | None = None,
) -> bool:
    for change in changes:
        if change.field != field:
            continue
        if selected_fields is None:
            return change.enabled
        return change.locked or field in set(selected_fields)
    return False
