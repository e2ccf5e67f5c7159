"""
Workspace Metadata Store — the local record of joined workspaces.

A single JSON file maps workspace names to their ``WorkspaceMetadata``.
``WorkspaceSession.setup`` consults it to decide whether a join is needed and
persists the certificate-relaxation toggle here.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog

from ownly_headless.types import WorkspaceMetadata

logger = structlog.get_logger(__name__)


class FileMetadataStore:
    """JSON-file implementation of the metadata store interface."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)

    async def get(self, workspace_name: str) -> Optional[WorkspaceMetadata]:
        entry = self._read_all().get(workspace_name)
        if not isinstance(entry, dict):
            return None
        return WorkspaceMetadata.from_dict(entry)

    async def put(self, workspace_name: str, metadata: WorkspaceMetadata) -> None:
        records = self._read_all()
        records[workspace_name] = metadata.to_dict()
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)
        logger.debug("metadata_store.saved", workspace=workspace_name)

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("metadata_store.read_failed", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}


class MemoryMetadataStore:
    """In-process metadata store, used by the loopback backend."""

    def __init__(self) -> None:
        self._records: dict[str, WorkspaceMetadata] = {}

    async def get(self, workspace_name: str) -> Optional[WorkspaceMetadata]:
        return self._records.get(workspace_name)

    async def put(self, workspace_name: str, metadata: WorkspaceMetadata) -> None:
        self._records[workspace_name] = metadata
