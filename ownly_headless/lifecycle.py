"""
Agent Lifecycle — the single active agent of this process.

The manager owns one slot holding the current ``AgentHandle``.  It is the only
writer of that slot; everyone else reads it through ``active``.

Hot-swap ordering:
  1. validate the request (PSK length) before touching the slot
  2. cancel the previous handle's token and detach its subscription
  3. set up the new workspace session and attach the bridge
  4. install the new handle

Requests are serialised by a lock, so two quick start calls can never leave
two subscriptions attached.  If step 3 fails nothing is installed and the slot
stays empty.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import structlog

from ownly_headless.channels.bridge import CancelToken, ChannelBridge, Subscription
from ownly_headless.errors import OwnlyError, StartError, ValidationError
from ownly_headless.run_state import RunState, RunStateStore
from ownly_headless.types import AgentMode, parse_psk_hex, validate_psk
from ownly_headless.workspace import WorkspaceConnector, WorkspaceSession

logger = structlog.get_logger(__name__)


@dataclass
class AgentHandle:
    """The running agent: which workspace/channel, and how to stop it."""

    workspace_name: str
    channel_name: str
    mode: AgentMode
    token: CancelToken
    subscription: Subscription = field(repr=False)
    session: WorkspaceSession = field(repr=False)
    started_at: float = field(default_factory=time.time)

    @property
    def active(self) -> bool:
        return not self.token.cancelled

    def describe(self) -> dict:
        return {
            "workspaceName": self.workspace_name,
            "channelName": self.channel_name,
            "mode": self.mode.value,
            "startedAt": self.started_at,
        }


@dataclass
class ChannelListing:
    """Result of a list-only request (no channel name given)."""

    workspace_name: str
    channels: list[str]


class AgentLifecycleManager:
    """Single-writer owner of the process-wide active agent slot."""

    def __init__(
        self,
        connector: WorkspaceConnector,
        bridge: ChannelBridge,
        *,
        default_mode: AgentMode = AgentMode.REPLY,
        settle_seconds: float = 0.0,
        run_state: Optional[RunStateStore] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._connector = connector
        self._bridge = bridge
        self._default_mode = default_mode
        self._settle_seconds = max(0.0, float(settle_seconds))
        self._run_state = run_state
        self._sleep = sleep
        self._active: Optional[AgentHandle] = None
        self._lock = asyncio.Lock()
        self._start_count = 0

    @property
    def active(self) -> Optional[AgentHandle]:
        return self._active

    @property
    def start_count(self) -> int:
        return self._start_count

    async def _open_session(self, workspace_name: str, psk: bytes) -> WorkspaceSession:
        session = await self._connector.setup(workspace_name, psk)
        if self._settle_seconds:
            # Let the chat history sync before channels are read.
            await self._sleep(self._settle_seconds)
        return session

    async def list_channels(self, workspace_name: str, psk: bytes) -> ChannelListing:
        """List-only mode: report the workspace's channels, subscribe to nothing."""
        psk = validate_psk(psk)
        session = await self._open_session(workspace_name, psk)
        try:
            channels = await self._bridge.list_channels(session)
        finally:
            # The active agent may be using the same workspace; only close a
            # session that is not the active one.
            if self._active is None or self._active.session is not session:
                await session.close()
        return ChannelListing(workspace_name=workspace_name, channels=channels)

    async def start_or_replace(
        self,
        workspace_name: str,
        psk: bytes,
        channel_name: str,
        mode: AgentMode | str | None = None,
    ) -> AgentHandle:
        """Start an agent, replacing the running one.

        Raises ValidationError before any state change for a bad request, and
        JoinError / ChannelNotFoundError / StartError when setup fails (the
        slot is then left empty).
        """
        psk = validate_psk(psk)
        if not workspace_name:
            raise ValidationError("workspace name is required")
        if not channel_name:
            raise ValidationError("channel name is required")
        agent_mode = AgentMode.parse(mode, self._default_mode)

        async with self._lock:
            await self._cancel_active("replaced")

            session: Optional[WorkspaceSession] = None
            token = CancelToken()
            try:
                session = await self._open_session(workspace_name, psk)
                subscription = await self._bridge.attach(
                    session, channel_name, agent_mode, token
                )
            except OwnlyError:
                token.cancel()
                if session is not None:
                    await session.close()
                raise
            except Exception as e:
                token.cancel()
                if session is not None:
                    await session.close()
                raise StartError(f"Could not start agent: {e}") from e

            handle = AgentHandle(
                workspace_name=workspace_name,
                channel_name=channel_name,
                mode=agent_mode,
                token=token,
                subscription=subscription,
                session=session,
            )
            self._active = handle
            self._start_count += 1

        logger.info(
            "lifecycle.agent_started",
            workspace=workspace_name,
            channel=channel_name,
            mode=agent_mode.value,
        )
        if self._run_state is not None:
            self._run_state.save(
                RunState(
                    workspace_name=workspace_name,
                    preshared_key_hex=psk.hex(),
                    channel_name=channel_name,
                    mode=agent_mode.value,
                )
            )
        return handle

    async def resume(self) -> Optional[AgentHandle]:
        """Restart the agent recorded in the run-state store, if any."""
        if self._run_state is None:
            return None
        state = self._run_state.load()
        if state is None:
            return None
        logger.info(
            "lifecycle.resuming",
            workspace=state.workspace_name,
            channel=state.channel_name,
        )
        try:
            return await self.start_or_replace(
                state.workspace_name,
                parse_psk_hex(state.preshared_key_hex),
                state.channel_name,
                state.mode,
            )
        except OwnlyError as e:
            logger.error("lifecycle.resume_failed", workspace=state.workspace_name, error=str(e))
            return None

    async def stop(self, reason: str = "shutdown", timeout: float = 5.0) -> None:
        """Cancel the active agent and wait briefly for its dispatcher to finish."""
        async with self._lock:
            handle = await self._cancel_active(reason)
        if handle is None:
            return
        try:
            await asyncio.wait_for(handle.subscription.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("lifecycle.stop_timeout", timeout=timeout)

    async def _cancel_active(self, reason: str) -> Optional[AgentHandle]:
        """Cancel and detach the current handle. Caller holds the lock."""
        handle = self._active
        if handle is None:
            return None
        logger.info(
            "lifecycle.agent_stopping",
            workspace=handle.workspace_name,
            channel=handle.channel_name,
            reason=reason,
        )
        handle.token.cancel()
        self._active = None
        await handle.subscription.close()
        await handle.session.close()
        return handle
