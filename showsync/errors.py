"""Exception taxonomy shared by the synchronization engine."""

from __future__ import annotations

from typing import Any, Sequence


class SyncError(Exception):
    """Base class for failures that carry a human-readable notice."""

    default_message = "There was an error fetching the show. Check the logs for more details."

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)


class InvalidCredential(SyncError):
    """The API key is missing or malformed; no request was attempted."""

    default_message = "No API key or API key is in incorrect format."


class QuotaExceeded(SyncError):
    """The catalog API refused the request because the quota is used up."""

    default_message = (
        "Number of API requests exceeded. Upgrade your plan or wait for the limit to reset."
    )


class NotFound(SyncError):
    """The identity has no canonical match."""

    default_message = "No matching show found."


class UpstreamServerError(SyncError):
    """The catalog API answered with a server-side error."""


class TransportError(SyncError):
    """The request failed on the network or the response could not be parsed."""

    default_message = "Could not reach the streaming availability service."


class ProviderDegraded(SyncError):
    """A single availability provider failed."""

    default_message = "Media server did not respond."


class NoIdentityFound(SyncError):
    """The document does not carry a title identity."""

    default_message = "No identity found"


class AmbiguousMatch(SyncError):
    """A title search returned several candidates and needs a human choice."""

    default_message = "Multiple matching shows found; choose one manually."

    def __init__(self, candidates: Sequence[Any], message: str | None = None):
        super().__init__(message)
        self.candidates = list(candidates)


class DocumentNotFound(SyncError):
    """The document store has no document with the requested name."""

    default_message = "Document not found."
