"""Tests for ownly_headless.lifecycle — the single active agent and hot-swap."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from conftest import PSK, WORKSPACE, FakeGenerator
from ownly_headless.backends.memory import MemorySyncService, MemoryWorkspace
from ownly_headless.channels.bridge import ChannelBridge
from ownly_headless.errors import ChannelNotFoundError, JoinError, StartError, ValidationError
from ownly_headless.lifecycle import AgentLifecycleManager
from ownly_headless.run_state import RunState, RunStateStore
from ownly_headless.types import AgentMode
from ownly_headless.workspace import WorkspaceConnector


class TestStartOrReplace:
    @pytest.mark.asyncio
    async def test_start_installs_handle(self, lifecycle: AgentLifecycleManager, workspace: MemoryWorkspace) -> None:
        handle = await lifecycle.start_or_replace(WORKSPACE, PSK, "general")

        assert lifecycle.active is handle
        assert handle.active is True
        assert handle.mode is AgentMode.REPLY
        assert handle.describe()["channelName"] == "general"
        assert workspace.chat.subscriber_count == 1
        await lifecycle.stop()

    @pytest.mark.asyncio
    async def test_double_start_leaves_one_subscriber(
        self, lifecycle: AgentLifecycleManager, workspace: MemoryWorkspace, generator: FakeGenerator
    ) -> None:
        first = await lifecycle.start_or_replace(WORKSPACE, PSK, "general")
        second = await lifecycle.start_or_replace(WORKSPACE, PSK, "general")

        assert first.active is False
        assert second.active is True
        assert lifecycle.active is second
        assert workspace.chat.subscriber_count == 1

        workspace.chat.deliver("general", "alice", "hi")
        await second.subscription.drain()
        assert generator.prompts == ["hi"]
        assert len(workspace.chat.published) == 1
        await lifecycle.stop()

    @pytest.mark.asyncio
    async def test_concurrent_starts_serialised(
        self, lifecycle: AgentLifecycleManager, workspace: MemoryWorkspace
    ) -> None:
        handles = await asyncio.gather(
            lifecycle.start_or_replace(WORKSPACE, PSK, "general"),
            lifecycle.start_or_replace(WORKSPACE, PSK, "random"),
        )
        assert sum(1 for h in handles if h.active) == 1
        assert workspace.chat.subscriber_count == 1
        assert lifecycle.start_count == 2
        await lifecycle.stop()

    @pytest.mark.asyncio
    async def test_switch_workspace(
        self,
        lifecycle: AgentLifecycleManager,
        sync: MemorySyncService,
        workspace: MemoryWorkspace,
        generator: FakeGenerator,
    ) -> None:
        other = sync.seed_workspace("ops", PSK, channels=["general"])
        first = await lifecycle.start_or_replace(WORKSPACE, PSK, "general")
        second = await lifecycle.start_or_replace("ops", PSK, "general")

        assert first.active is False
        assert lifecycle.active is second
        assert workspace.chat.subscriber_count == 0
        assert other.chat.subscriber_count == 1

        workspace.chat.deliver("general", "alice", "old workspace")
        other.chat.deliver("general", "alice", "new workspace")
        await second.subscription.drain()
        assert generator.prompts == ["new workspace"]
        assert workspace.chat.published == []
        await lifecycle.stop()

    @pytest.mark.asyncio
    async def test_concurrent_starts_across_workspaces(
        self,
        lifecycle: AgentLifecycleManager,
        sync: MemorySyncService,
        workspace: MemoryWorkspace,
        generator: FakeGenerator,
    ) -> None:
        other = sync.seed_workspace("ops", PSK, channels=["general"])
        handles = await asyncio.gather(
            lifecycle.start_or_replace(WORKSPACE, PSK, "general"),
            lifecycle.start_or_replace("ops", PSK, "general"),
        )

        live = [h for h in handles if h.active]
        assert len(live) == 1
        assert lifecycle.active is live[0]
        assert workspace.chat.subscriber_count + other.chat.subscriber_count == 1

        loser = workspace if live[0].workspace_name == "ops" else other
        loser.chat.deliver("general", "alice", "stale")
        await live[0].subscription.drain()
        assert generator.prompts == []
        await lifecycle.stop()

    @pytest.mark.asyncio
    async def test_switch_channel(self, lifecycle: AgentLifecycleManager, workspace: MemoryWorkspace, generator: FakeGenerator) -> None:
        await lifecycle.start_or_replace(WORKSPACE, PSK, "general")
        handle = await lifecycle.start_or_replace(WORKSPACE, PSK, "random")

        workspace.chat.deliver("general", "alice", "old channel")
        workspace.chat.deliver("random", "alice", "new channel")
        await handle.subscription.drain()
        assert generator.prompts == ["new channel"]
        await lifecycle.stop()

    @pytest.mark.asyncio
    async def test_short_psk_rejected_before_any_action(
        self, lifecycle: AgentLifecycleManager, sync: MemorySyncService
    ) -> None:
        with pytest.raises(ValidationError):
            await lifecycle.start_or_replace(WORKSPACE, bytes.fromhex("00" * 31), "general")
        assert sync.join_calls == []
        assert lifecycle.active is None

    @pytest.mark.asyncio
    async def test_bad_request_keeps_running_agent(self, lifecycle: AgentLifecycleManager) -> None:
        handle = await lifecycle.start_or_replace(WORKSPACE, PSK, "general")
        with pytest.raises(ValidationError):
            await lifecycle.start_or_replace(WORKSPACE, bytes(5), "general")
        with pytest.raises(ValidationError):
            await lifecycle.start_or_replace(WORKSPACE, PSK, "general", "yell")
        assert lifecycle.active is handle
        assert handle.active is True
        await lifecycle.stop()

    @pytest.mark.asyncio
    async def test_unknown_channel_leaves_slot_empty(
        self, lifecycle: AgentLifecycleManager, workspace: MemoryWorkspace
    ) -> None:
        await lifecycle.start_or_replace(WORKSPACE, PSK, "general")
        with pytest.raises(ChannelNotFoundError):
            await lifecycle.start_or_replace(WORKSPACE, PSK, "ops")
        assert lifecycle.active is None
        assert workspace.chat.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_join_failure_leaves_slot_empty(self, lifecycle: AgentLifecycleManager) -> None:
        with pytest.raises(JoinError):
            await lifecycle.start_or_replace(WORKSPACE, b"\x01" * 32, "general")
        assert lifecycle.active is None

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_start_error(self, connector: WorkspaceConnector) -> None:
        bridge = ChannelBridge(generator=FakeGenerator())
        bridge.attach = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]
        manager = AgentLifecycleManager(connector, bridge)
        with pytest.raises(StartError, match="boom"):
            await manager.start_or_replace(WORKSPACE, PSK, "general")
        assert manager.active is None

    @pytest.mark.asyncio
    async def test_settle_delay(self, connector: WorkspaceConnector, bridge: ChannelBridge) -> None:
        sleep = AsyncMock()
        manager = AgentLifecycleManager(connector, bridge, settle_seconds=2.0, sleep=sleep)
        await manager.start_or_replace(WORKSPACE, PSK, "general")
        sleep.assert_awaited_once_with(2.0)
        await manager.stop()

    @pytest.mark.asyncio
    async def test_default_mode(self, connector: WorkspaceConnector) -> None:
        bridge = ChannelBridge(generator=FakeGenerator(), digest=AsyncMock())
        manager = AgentLifecycleManager(connector, bridge, default_mode=AgentMode.DIGEST)
        handle = await manager.start_or_replace(WORKSPACE, PSK, "general")
        assert handle.mode is AgentMode.DIGEST
        await manager.stop()


class TestListChannels:
    @pytest.mark.asyncio
    async def test_lists_without_subscribing(
        self, lifecycle: AgentLifecycleManager, workspace: MemoryWorkspace
    ) -> None:
        listing = await lifecycle.list_channels(WORKSPACE, PSK)
        assert listing.channels == ["general", "random"]
        assert workspace.chat.subscriber_count == 0
        assert lifecycle.active is None

    @pytest.mark.asyncio
    async def test_listing_keeps_active_agent(self, lifecycle: AgentLifecycleManager) -> None:
        handle = await lifecycle.start_or_replace(WORKSPACE, PSK, "general")
        await lifecycle.list_channels(WORKSPACE, PSK)
        assert lifecycle.active is handle
        assert handle.active is True
        await lifecycle.stop()


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_cancels_and_closes(
        self, lifecycle: AgentLifecycleManager, workspace: MemoryWorkspace
    ) -> None:
        handle = await lifecycle.start_or_replace(WORKSPACE, PSK, "general")
        await lifecycle.stop()
        assert lifecycle.active is None
        assert handle.active is False
        assert handle.session.closed is True
        assert workspace.chat.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_stop_without_agent(self, lifecycle: AgentLifecycleManager) -> None:
        await lifecycle.stop()
        assert lifecycle.active is None


class TestRunState:
    @pytest.mark.asyncio
    async def test_start_records_run_state(
        self, connector: WorkspaceConnector, bridge: ChannelBridge, tmp_path: Path
    ) -> None:
        store = RunStateStore(tmp_path / "run_state.json")
        manager = AgentLifecycleManager(connector, bridge, run_state=store)
        await manager.start_or_replace(WORKSPACE, PSK, "random")
        await manager.stop()

        state = store.load()
        assert state is not None
        assert state.workspace_name == WORKSPACE
        assert state.preshared_key_hex == PSK.hex()
        assert state.channel_name == "random"
        assert state.mode == "reply"

    @pytest.mark.asyncio
    async def test_resume(self, connector: WorkspaceConnector, bridge: ChannelBridge, tmp_path: Path) -> None:
        store = RunStateStore(tmp_path / "run_state.json")
        store.save(RunState(workspace_name=WORKSPACE, preshared_key_hex=PSK.hex(), channel_name="general"))
        manager = AgentLifecycleManager(connector, bridge, run_state=store)

        handle = await manager.resume()
        assert handle is not None
        assert manager.active is handle
        assert handle.channel_name == "general"
        await manager.stop()

    @pytest.mark.asyncio
    async def test_resume_failure_returns_none(
        self, connector: WorkspaceConnector, bridge: ChannelBridge, tmp_path: Path
    ) -> None:
        store = RunStateStore(tmp_path / "run_state.json")
        store.save(RunState(workspace_name=WORKSPACE, preshared_key_hex=PSK.hex(), channel_name="gone"))
        manager = AgentLifecycleManager(connector, bridge, run_state=store)
        assert await manager.resume() is None
        assert manager.active is None

    @pytest.mark.asyncio
    async def test_resume_without_store(self, lifecycle: AgentLifecycleManager) -> None:
        assert await lifecycle.resume() is None
