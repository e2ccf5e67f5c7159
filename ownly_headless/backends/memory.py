"""
Loopback backend — an in-process stand-in for the sync and identity services.

Everything lives in memory: workspaces, their chat channels and document
trees, and a credential flag.  It is what ``ownly-headless`` runs against when
no real backend is configured, and what the test suite drives.  Nothing here
leaves the process.
"""

from __future__ import annotations

import itertools
from typing import Iterable, Optional
from urllib.parse import unquote

import structlog

from ownly_headless.backends import Backend
from ownly_headless.metadata import MemoryMetadataStore
from ownly_headless.services import ChallengeCallback, MessageCallback, Unsubscribe
from ownly_headless.types import PSK_LENGTH, ChatMessage

logger = structlog.get_logger(__name__)


class MemoryChat:
    """Chat channels of one workspace with synchronous fan-out to subscribers."""

    def __init__(self, channels: Iterable[str] = ()) -> None:
        self._history: dict[str, list[ChatMessage]] = {name: [] for name in channels}
        self._subscribers: dict[int, MessageCallback] = {}
        self._ids = itertools.count(1)
        self.published: list[tuple[str, ChatMessage]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def create_channel(self, name: str) -> None:
        self._history.setdefault(name, [])

    async def list_channels(self) -> list[str]:
        return list(self._history)

    async def get_history(self, channel: str) -> list[ChatMessage]:
        return list(self._history.get(channel, []))

    def subscribe(self, on_message: MessageCallback) -> Unsubscribe:
        sub_id = next(self._ids)
        self._subscribers[sub_id] = on_message

        def _unsubscribe() -> None:
            self._subscribers.pop(sub_id, None)

        return _unsubscribe

    async def publish(self, channel: str, message: ChatMessage) -> None:
        if channel not in self._history:
            raise KeyError(f"no such channel: {channel}")
        self.published.append((channel, message))
        self._append(channel, message)

    def deliver(self, channel: str, author: str, text: str) -> ChatMessage:
        """Simulate a message from another peer arriving on *channel*."""
        message = ChatMessage.new(author, text)
        self.create_channel(channel)
        self._append(channel, message)
        return message

    def _append(self, channel: str, message: ChatMessage) -> None:
        self._history[channel].append(message)
        for callback in list(self._subscribers.values()):
            callback(channel, message)


class MemoryDocumentTree:
    """Projects mapping file paths to text."""

    def __init__(self) -> None:
        self._projects: dict[str, dict[str, str]] = {}

    def add_file(self, project: str, path: str, text: str) -> None:
        self._projects.setdefault(project, {})[path] = text

    async def list_projects(self) -> list[str]:
        return list(self._projects)

    async def list_files(self, project: str) -> list[str]:
        return list(self._projects.get(project, {}))

    async def read_text(self, project: str, path: str) -> str:
        try:
            return self._projects[project][path]
        except KeyError as e:
            raise FileNotFoundError(f"{project}:{path}") from e


class MemoryWorkspace:
    """One shared workspace as every peer would see it."""

    def __init__(self, name: str, psk: bytes, channels: Iterable[str] = ()) -> None:
        self.name = name
        self.psk = psk
        self.chat = MemoryChat(channels)
        self.documents = MemoryDocumentTree()


class MemorySessionHandle:
    """Session handle returned by ``resume_workspace``."""

    def __init__(self, workspace: MemoryWorkspace) -> None:
        self._workspace = workspace
        self.closed = False

    @property
    def document_tree(self) -> MemoryDocumentTree:
        return self._workspace.documents

    @property
    def chat(self) -> MemoryChat:
        return self._workspace.chat

    def close(self) -> None:
        self.closed = True


class MemorySyncService:
    """Join/resume against in-process workspaces."""

    def __init__(self, default_channels: Iterable[str] = ("general",)) -> None:
        self._default_channels = tuple(default_channels)
        self.workspaces: dict[str, MemoryWorkspace] = {}
        self.joined: set[str] = set()
        self.join_calls: list[dict] = []

    def seed_workspace(
        self,
        name: str,
        psk: bytes,
        channels: Iterable[str] = (),
    ) -> MemoryWorkspace:
        """Create a workspace as if another peer had set it up."""
        workspace = MemoryWorkspace(name, psk, channels)
        self.workspaces[name] = workspace
        return workspace

    async def join_workspace(
        self,
        name: str,
        display_name: str,
        trusted: bool,
        relaxed_certs: bool,
        psk: bytes,
    ) -> None:
        self.join_calls.append({
            "name": name,
            "display_name": display_name,
            "trusted": trusted,
            "relaxed_certs": relaxed_certs,
        })
        if len(psk) != PSK_LENGTH:
            raise ValueError("invalid PSK length")
        workspace = self.workspaces.get(name)
        if workspace is None:
            workspace = self.seed_workspace(name, psk, self._default_channels)
        elif workspace.psk != psk:
            raise PermissionError(f"PSK does not unlock workspace {name!r}")
        self.joined.add(name)
        logger.debug("memory_sync.joined", workspace=name)

    async def resume_workspace(self, escaped_name: str) -> MemorySessionHandle:
        name = unquote(escaped_name)
        workspace = self.workspaces.get(name)
        if workspace is None or name not in self.joined:
            raise LookupError(f"workspace {name!r} has not been joined")
        return MemorySessionHandle(workspace)


class LoopbackIdentityService:
    """Identity service that certifies after one accepted verification code.

    ``expected_code`` None accepts any non-empty code.  After ``max_rounds``
    rejected codes the challenge fails terminally.
    """

    def __init__(
        self,
        *,
        has_credential: bool = False,
        expected_code: Optional[str] = None,
        max_rounds: int = 3,
    ) -> None:
        self._has_credential = has_credential
        self._expected_code = expected_code
        self._max_rounds = max(1, int(max_rounds))
        self._principal = ""
        self.connected = False
        self.challenges = 0

    async def connect_to_network(self) -> None:
        self.connected = True

    async def has_credential(self) -> bool:
        return self._has_credential

    async def issue_challenge(self, principal: str, callback: ChallengeCallback) -> None:
        self.challenges += 1
        self._principal = principal
        await callback("challenge-sent")
        for _ in range(self._max_rounds):
            code = (await callback("need-code")).strip()
            if code and (self._expected_code is None or code == self._expected_code):
                self._has_credential = True
                return
            await callback("wrong-code")
        raise RuntimeError(f"verification failed for {principal}")

    async def identity_name(self) -> str:
        return f"/ownly/{self._principal or 'anonymous'}"


def create_backend() -> Backend:
    """Default ``OWNLY_BACKEND`` factory."""
    return Backend(
        identity=LoopbackIdentityService(),
        sync=MemorySyncService(),
        metadata=MemoryMetadataStore(),
    )
