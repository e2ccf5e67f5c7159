"""
Shared fixtures for the ownly-headless test suite.

Everything runs against the in-process loopback backend; the language model
and the SMTP relay are replaced by small recording fakes so tests can assert
on exactly what would have left the process.
"""

from __future__ import annotations

from typing import Optional, Sequence

import pytest

from ownly_headless.backends.memory import (
    LoopbackIdentityService,
    MemorySessionHandle,
    MemorySyncService,
    MemoryWorkspace,
)
from ownly_headless.channels.bridge import ChannelBridge
from ownly_headless.errors import DeliveryError
from ownly_headless.lifecycle import AgentLifecycleManager
from ownly_headless.metadata import MemoryMetadataStore
from ownly_headless.types import DeliveryInfo, WorkspaceDescriptor
from ownly_headless.workspace import WorkspaceConnector, WorkspaceSession

PSK = bytes(range(32))
PSK_HEX = PSK.hex()
WORKSPACE = "team"

TEMPLATE = (
    "<html><body><p>Hello</p>\n"
    "<hr>PLACEHOLDER<hr>\n"
    "<p>Footer</p></body></html>"
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGenerator:
    """Records prompts and answers ``echo <prompt>``."""

    def __init__(self, fail_on: Optional[str] = None) -> None:
        self.prompts: list[str] = []
        self._fail_on = fail_on

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._fail_on is not None and prompt == self._fail_on:
            raise RuntimeError("model unavailable")
        return f"echo {prompt}"


class FakeMail:
    """Records sends; raises DeliveryError when ``fail`` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []

    async def send(
        self,
        sender: str,
        to: Sequence[str],
        bcc: Sequence[str],
        subject: str,
        html_body: str,
    ) -> DeliveryInfo:
        if self.fail:
            raise DeliveryError("relay refused")
        self.sent.append({
            "sender": sender,
            "to": list(to),
            "bcc": list(bcc),
            "subject": subject,
            "html": html_body,
        })
        return DeliveryInfo(message_id="<test@local>", accepted=list(to) + list(bcc))


async def no_sleep(seconds: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Backend fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync() -> MemorySyncService:
    service = MemorySyncService()
    service.seed_workspace(WORKSPACE, PSK, channels=["general", "random"])
    return service


@pytest.fixture
def workspace(sync: MemorySyncService) -> MemoryWorkspace:
    return sync.workspaces[WORKSPACE]


@pytest.fixture
def metadata() -> MemoryMetadataStore:
    return MemoryMetadataStore()


@pytest.fixture
def identity() -> LoopbackIdentityService:
    return LoopbackIdentityService(has_credential=True)


@pytest.fixture
def connector(sync: MemorySyncService, metadata: MemoryMetadataStore) -> WorkspaceConnector:
    return WorkspaceConnector(sync, metadata)


@pytest.fixture
def session(workspace: MemoryWorkspace) -> WorkspaceSession:
    return WorkspaceSession(
        descriptor=WorkspaceDescriptor(name=WORKSPACE, preshared_key=PSK),
        handle=MemorySessionHandle(workspace),
    )


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def mail() -> FakeMail:
    return FakeMail()


@pytest.fixture
def bridge(generator: FakeGenerator, identity: LoopbackIdentityService) -> ChannelBridge:
    return ChannelBridge(generator=generator, identity=identity)


@pytest.fixture
def lifecycle(connector: WorkspaceConnector, bridge: ChannelBridge) -> AgentLifecycleManager:
    return AgentLifecycleManager(connector, bridge, settle_seconds=0.0)
