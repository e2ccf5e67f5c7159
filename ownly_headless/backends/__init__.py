"""
Backend loading — where the sync and identity services come from.

A backend is any callable named by ``OWNLY_BACKEND`` (``package.module:factory``)
that returns a ``Backend``.  The default is the in-process loopback backend in
``ownly_headless.backends.memory``; a deployment points it at the adapter for
its real sync engine and network transport.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Optional

import structlog

from ownly_headless.services import IdentityService, MetadataStore, SyncService

logger = structlog.get_logger(__name__)


class BackendLoadError(RuntimeError):
    """Raised when OWNLY_BACKEND cannot be imported or returns the wrong thing."""


@dataclass
class Backend:
    identity: IdentityService
    sync: SyncService
    # None means "use the JSON file store from config".
    metadata: Optional[MetadataStore] = None


def load_backend(target: str) -> Backend:
    """Import and call the factory named by *target* (``module:callable``)."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise BackendLoadError(f"invalid backend target {target!r}; expected 'module:factory'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise BackendLoadError(f"cannot import backend module {module_name!r}: {e}") from e
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise BackendLoadError(f"backend factory {target!r} is not callable")

    backend = factory()
    if not isinstance(backend, Backend):
        raise BackendLoadError(f"backend factory {target!r} did not return a Backend")
    if not isinstance(backend.identity, IdentityService):
        raise BackendLoadError("backend identity service is missing required methods")
    if not isinstance(backend.sync, SyncService):
        raise BackendLoadError("backend sync service is missing required methods")
    logger.info("backend.loaded", target=target)
    return backend


__all__ = ["Backend", "BackendLoadError", "load_backend"]
