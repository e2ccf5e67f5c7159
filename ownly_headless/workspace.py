"""
Workspace Session — joining (or re-entering) a shared workspace.

A workspace is unlocked by a 32-byte pre-shared key.  The first time a node
sees a workspace it asks the sync service to join it; afterwards the local
metadata record short-circuits the join and the session is simply resumed.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field

import structlog

from ownly_headless.errors import JoinError
from ownly_headless.services import ChatChannel, DocumentTree, MetadataStore, SessionHandle, SyncService
from ownly_headless.types import (
    WorkspaceDescriptor,
    WorkspaceMetadata,
    escape_workspace_name,
    validate_psk,
)

logger = structlog.get_logger(__name__)


@dataclass
class WorkspaceSession:
    """An open workspace: its descriptor plus document-tree and chat handles."""

    descriptor: WorkspaceDescriptor
    handle: SessionHandle
    closed: bool = field(default=False, init=False)

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def document_tree(self) -> DocumentTree:
        return self.handle.document_tree

    @property
    def chat(self) -> ChatChannel:
        return self.handle.chat

    async def close(self) -> None:
        """Release the session; a no-op for handles without teardown."""
        if self.closed:
            return
        self.closed = True
        closer = getattr(self.handle, "close", None)
        if callable(closer):
            result = closer()
            if inspect.isawaitable(result):
                await result
        logger.debug("workspace.closed", workspace=self.name)


class WorkspaceConnector:
    """Joins or resumes workspaces against one sync service and metadata store.

    ``trusted`` and ``relaxed_certs`` are passed verbatim to the sync service on
    first join.  ``relax_certificates`` is the explicit trust-relaxation toggle:
    when set, the stored metadata is marked ``relaxed_certs`` and persisted
    before the session is resumed.
    """

    def __init__(
        self,
        sync: SyncService,
        metadata: MetadataStore,
        *,
        trusted: bool = False,
        relaxed_certs: bool = False,
        relax_certificates: bool = False,
    ) -> None:
        self._sync = sync
        self._metadata = metadata
        self._trusted = trusted
        self._relaxed_certs = relaxed_certs
        self._relax_certificates = relax_certificates

    async def setup(self, name: str, psk: bytes) -> WorkspaceSession:
        """Return an open session for *name*.

        Raises ValidationError (before any network action) for a bad PSK and
        JoinError for any sync-service failure.
        """
        descriptor = WorkspaceDescriptor(name=name, preshared_key=validate_psk(psk))

        try:
            meta = await self._metadata.get(name)
            if meta is None:
                logger.info("workspace.joining", workspace=name)
                await self._sync.join_workspace(
                    name,
                    name,
                    self._trusted,
                    self._relaxed_certs,
                    descriptor.preshared_key,
                )
                # The sync service may record metadata itself; fill it in if not.
                meta = await self._metadata.get(name)
                if meta is None:
                    meta = WorkspaceMetadata(
                        name=name,
                        label=name,
                        trusted=self._trusted,
                        relaxed_certs=self._relaxed_certs,
                    )
                    await self._metadata.put(name, meta)
            else:
                logger.debug("workspace.already_joined", workspace=name)

            if self._relax_certificates and not meta.relaxed_certs:
                meta.relaxed_certs = True
                await self._metadata.put(name, meta)
                logger.warning("workspace.certificates_relaxed", workspace=name)

            handle = await self._sync.resume_workspace(escape_workspace_name(name))
        except Exception as e:
            raise JoinError(f"Could not join workspace '{name}': {e}") from e

        logger.info("workspace.joined", workspace=name)
        return WorkspaceSession(descriptor=descriptor, handle=handle)
