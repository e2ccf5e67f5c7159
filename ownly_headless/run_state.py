"""
Run-State Store — remembers the last agent that started successfully.

On restart the daemon reads this record and re-starts the same agent without
waiting for a control call.  The file holds the workspace secret, so it is
written owner-only.

Only uses: pathlib, json, time, structlog, and the shared types.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RunState:
    """Parameters of the last successfully started agent."""

    workspace_name: str
    preshared_key_hex: str = field(repr=False)
    channel_name: str
    mode: str = "reply"
    started_at: float = field(default_factory=time.time)


class RunStateStore:
    """Persists a single ``RunState`` record as JSON."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def save(self, state: RunState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.path.write_text(
                json.dumps(asdict(state), ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            self._best_effort_chmod(self.path, 0o600)
        except OSError as e:
            logger.error("run_state.write_failed", path=str(self.path), error=str(e))
            return
        logger.info(
            "run_state.saved",
            workspace=state.workspace_name,
            channel=state.channel_name,
            mode=state.mode,
        )

    def load(self) -> Optional[RunState]:
        """Return the stored record, or None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("run_state.read_failed", path=str(self.path), error=str(e))
            return None
        if not isinstance(data, dict):
            return None
        try:
            return RunState(
                workspace_name=str(data["workspace_name"]),
                preshared_key_hex=str(data["preshared_key_hex"]),
                channel_name=str(data["channel_name"]),
                mode=str(data.get("mode", "reply")),
                started_at=float(data.get("started_at", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("run_state.corrupted", path=str(self.path), error=str(e))
            return None

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("run_state.clear_failed", path=str(self.path), error=str(e))

    @staticmethod
    def _best_effort_chmod(path: Path, mode: int) -> None:
        """Attempt to harden permissions without failing on unsupported filesystems."""
        try:
            path.chmod(mode)
        except OSError:
            logger.debug("run_state.chmod_skipped", path=str(path), mode=oct(mode))
