"""
Narrow interfaces to the external collaborators.

The control plane never talks to the sync engine, the network transport, the
text-generation backend, or SMTP directly.  It depends on these protocols, and
the concrete objects are supplied by a backend factory (see
``ownly_headless.backends``) or by the modules in ``ownly_headless.api`` and
``ownly_headless.mail``.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, Sequence, runtime_checkable

from ownly_headless.types import ChatMessage, DeliveryInfo, WorkspaceMetadata

# Identity-service callback: receives a status tag, returns a verification code
# (empty string when there is nothing to submit).
ChallengeCallback = Callable[[str], Awaitable[str]]

# Chat-stream callback: (channel name, message).
MessageCallback = Callable[[str, ChatMessage], None]

# Returned by ChatChannel.subscribe(); detaches the callback.
Unsubscribe = Callable[[], None]


@runtime_checkable
class IdentityService(Protocol):
    async def connect_to_network(self) -> None: ...

    async def has_credential(self) -> bool: ...

    async def issue_challenge(self, principal: str, callback: ChallengeCallback) -> None: ...

    async def identity_name(self) -> str: ...


@runtime_checkable
class ChatChannel(Protocol):
    async def list_channels(self) -> list[str]: ...

    async def get_history(self, channel: str) -> list[ChatMessage]: ...

    def subscribe(self, on_message: MessageCallback) -> Unsubscribe: ...

    async def publish(self, channel: str, message: ChatMessage) -> None: ...


@runtime_checkable
class DocumentTree(Protocol):
    async def list_projects(self) -> list[str]: ...

    async def list_files(self, project: str) -> list[str]: ...

    async def read_text(self, project: str, path: str) -> str: ...


@runtime_checkable
class SessionHandle(Protocol):
    @property
    def document_tree(self) -> DocumentTree: ...

    @property
    def chat(self) -> ChatChannel: ...


@runtime_checkable
class SyncService(Protocol):
    async def join_workspace(
        self,
        name: str,
        display_name: str,
        trusted: bool,
        relaxed_certs: bool,
        psk: bytes,
    ) -> None: ...

    async def resume_workspace(self, escaped_name: str) -> SessionHandle: ...


@runtime_checkable
class MetadataStore(Protocol):
    async def get(self, workspace_name: str) -> Optional[WorkspaceMetadata]: ...

    async def put(self, workspace_name: str, metadata: WorkspaceMetadata) -> None: ...


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


@runtime_checkable
class MailTransport(Protocol):
    async def send(
        self,
        sender: str,
        to: Sequence[str],
        bcc: Sequence[str],
        subject: str,
        html_body: str,
    ) -> DeliveryInfo: ...
