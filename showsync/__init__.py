"""ShowSync keeps media documents in step with streaming catalogs."""

from __future__ import annotations

from importlib import import_module
from importlib.metadata import PackageNotFoundError, version
from typing import Any

try:
    __version__ = version("showsync")
except PackageNotFoundError:  # running from a source checkout
    __version__ = "0.0.0"

# Resolved on first access so importing the package does not build the app.
_LAZY_EXPORTS = {
    "app": "showsync.main",
    "create_app": "showsync.main",
    "Settings": "showsync.config",
    "SyncService": "showsync.services.sync",
}

__all__ = ["__version__", *_LAZY_EXPORTS]


def __getattr__(name: str) -> Any:
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(module_name), name)
