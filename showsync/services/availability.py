"""Fan-out availability checks across media-server providers."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Sequence

from ..errors import ProviderDegraded
from ..models import JellyfinInstance, ProviderAvailabilityResult, TitleIdentity

logger = logging.getLogger(__name__)


class AvailabilityProvider(Protocol):
    async def check(
        self, instance: JellyfinInstance, identity: TitleIdentity
    ) -> ProviderAvailabilityResult: ...


class AvailabilityAggregator:
    """Check every configured provider independently and merge the results."""

    def __init__(self, provider: AvailabilityProvider):
        self._provider = provider

    async def check_availability(
        self,
        identity: TitleIdentity,
        providers: Sequence[JellyfinInstance],
    ) -> list[ProviderAvailabilityResult]:
        """Return one result per provider, in provider order.

        A failing provider reports ``available=False`` and never affects the
        others.
        """

        if not providers:
            return []

        results = await asyncio.gather(
            *(self._provider.check(instance, identity) for instance in providers),
            return_exceptions=True,
        )

        merged: list[ProviderAvailabilityResult] = []
        for instance, result in zip(providers, results):
            if isinstance(result, ProviderDegraded):
                logger.warning("Provider %s degraded: %s", instance.name, result.message)
            elif isinstance(result, Exception):
                logger.warning(
                    "Availability check on %s failed unexpectedly: %r", instance.name, result
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                merged.append(result)
                continue
            merged.append(
                ProviderAvailabilityResult(provider_name=instance.name, available=False)
            )
        return merged
