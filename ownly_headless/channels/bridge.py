"""
Channel Bridge — one workspace chat channel wired to one agent behavior.

The bridge subscribes to the workspace chat stream and hands every message of
its channel to a single dispatcher task through an asyncio.Queue, so messages
are processed strictly in channel-history order and never overlap.

Each message first passes the self-reply guard: text starting with the
sentinel prefix is what this agent itself wrote, and is dropped to prevent
reply loops.  The guard is content-based, so any externally written message
that happens to start with the prefix is dropped too.

Everything else goes to the subscription's mode, fixed at attach time:
  - reply:  generate an answer, prefix it with the sentinel, publish it back
  - digest: run the DigestPipeline once, then report completion so the
            process can exit

Concurrency model:
  - the chat callback only enqueues, so it never blocks the sync thread
  - every externally visible action (publish, digest send) first checks the
    subscription's cancel token, so work started by a replaced agent never
    leaks out after the new one is installed
  - handler exceptions are logged and do not stop the dispatcher
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, cast

import structlog

from ownly_headless.errors import ChannelNotFoundError, DigestError, ValidationError
from ownly_headless.services import IdentityService, TextGenerator, Unsubscribe
from ownly_headless.types import AgentMode, ChatMessage, DigestOutcome

if TYPE_CHECKING:
    from ownly_headless.digest import DigestPipeline
    from ownly_headless.workspace import WorkspaceSession

logger = structlog.get_logger(__name__)

DEFAULT_SENTINEL_PREFIX = "AGENT: "

# Author used on replies when no identity service is wired in.
_FALLBACK_AUTHOR = "agent"

_STOP = object()


class CancelToken:
    """Liveness flag shared by an agent handle and everything it spawned."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class _DigestState(str, Enum):
    ARMED = "armed"
    RUNNING = "running"
    DONE = "done"


class Subscription:
    """A live attachment of the bridge to one channel.

    Lifecycle: attach() → (messages dispatched in order) → close()
    """

    def __init__(
        self,
        bridge: "ChannelBridge",
        session: "WorkspaceSession",
        channel_name: str,
        mode: AgentMode,
        token: CancelToken,
        history: list[ChatMessage],
    ) -> None:
        self._bridge = bridge
        self.session = session
        self.channel_name = channel_name
        self.mode = mode
        self.token = token
        self.history = history
        self._queue: asyncio.Queue[ChatMessage | object] = asyncio.Queue()
        self._unsubscribe: Optional[Unsubscribe] = None
        self._worker: asyncio.Task[None] | None = None
        self._digest_state = _DigestState.ARMED
        self.received = 0
        self.dispatched = 0

    @property
    def is_active(self) -> bool:
        return not self.token.cancelled

    @property
    def digest_state(self) -> str:
        return self._digest_state.value

    def _start(self) -> None:
        self._worker = asyncio.create_task(
            self._dispatch_loop(), name=f"bridge-{self.channel_name}"
        )
        self._unsubscribe = self.session.chat.subscribe(self._on_message)

    def _on_message(self, channel: str, message: ChatMessage) -> None:
        """Chat-stream callback: filter by channel and enqueue."""
        if self.token.cancelled or channel != self.channel_name:
            return
        self.received += 1
        self._queue.put_nowait(message)

    async def _dispatch_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    break
                await self._bridge._dispatch(self, item)  # type: ignore[arg-type]
            except Exception:
                logger.error(
                    "bridge.dispatch_error",
                    channel=self.channel_name,
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

        # Anything still queued belongs to a cancelled agent; discard it.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every message received so far has been dispatched."""
        await self._queue.join()

    async def close(self) -> None:
        """Cancel the token and detach from the chat stream.

        A message already being dispatched finishes, but its externally
        visible actions are suppressed by the cancelled token.
        """
        if self.token.cancelled and self._unsubscribe is None:
            return
        self.token.cancel()
        if self._unsubscribe is not None:
            try:
                self._unsubscribe()
            finally:
                self._unsubscribe = None
        self._queue.put_nowait(_STOP)
        logger.info(
            "bridge.detached",
            workspace=self.session.name,
            channel=self.channel_name,
        )

    async def wait_closed(self) -> None:
        if self._worker is not None:
            await self._worker


class ChannelBridge:
    """Attaches agents to chat channels and implements their behaviors."""

    def __init__(
        self,
        *,
        generator: Optional[TextGenerator] = None,
        digest: Optional["DigestPipeline"] = None,
        identity: Optional[IdentityService] = None,
        sentinel_prefix: str = DEFAULT_SENTINEL_PREFIX,
        on_digest_complete: Optional[Callable[[DigestOutcome], None]] = None,
    ) -> None:
        if not sentinel_prefix:
            raise ValidationError("sentinel prefix must not be empty")
        self._generator = generator
        self._digest = digest
        self._identity = identity
        self._sentinel_prefix = sentinel_prefix
        self._on_digest_complete = on_digest_complete

    @property
    def sentinel_prefix(self) -> str:
        return self._sentinel_prefix

    def is_self_message(self, text: str) -> bool:
        """The self-reply guard: True for text this agent wrote."""
        return text.startswith(self._sentinel_prefix)

    async def list_channels(self, session: "WorkspaceSession") -> list[str]:
        return list(await session.chat.list_channels())

    async def attach(
        self,
        session: "WorkspaceSession",
        channel_name: str,
        mode: AgentMode = AgentMode.REPLY,
        token: Optional[CancelToken] = None,
    ) -> Subscription:
        """Subscribe *mode* to *channel_name*.

        Raises ChannelNotFoundError for an unknown channel and ValidationError
        for an empty name or a mode whose collaborator is missing.  Nothing is
        subscribed when it raises.
        """
        if not channel_name:
            raise ValidationError("channel name is required to attach; list channels instead")
        if mode is AgentMode.REPLY and self._generator is None:
            raise ValidationError("reply mode needs a text generator")
        if mode is AgentMode.DIGEST and self._digest is None:
            raise ValidationError("digest mode needs a digest pipeline")

        channels = await self.list_channels(session)
        if channel_name not in channels:
            raise ChannelNotFoundError(channel_name, channels)

        history = list(await session.chat.get_history(channel_name))
        subscription = Subscription(
            self,
            session,
            channel_name,
            mode,
            token or CancelToken(),
            history,
        )
        subscription._start()
        logger.info(
            "bridge.attached",
            workspace=session.name,
            channel=channel_name,
            mode=mode.value,
            history=len(history),
        )
        return subscription

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, sub: Subscription, message: ChatMessage) -> None:
        logger.info(
            "bridge.message",
            channel=sub.channel_name,
            author=message.author,
            ts=message.timestamp_millis,
            content=message.text,
        )
        if self.is_self_message(message.text):
            logger.debug("bridge.self_message_ignored", channel=sub.channel_name)
            return
        if not sub.is_active:
            return

        sub.dispatched += 1
        if sub.mode is AgentMode.REPLY:
            await self._reply(sub, message)
        else:
            await self._run_digest(sub)

    async def _reply(self, sub: Subscription, message: ChatMessage) -> None:
        # attach() refuses reply mode without a generator.
        generator = cast(TextGenerator, self._generator)
        started = time.monotonic()
        try:
            answer = await generator.generate(message.text)
        except Exception as e:
            logger.error(
                "bridge.generation_failed",
                channel=sub.channel_name,
                error=str(e),
            )
            return

        if not sub.is_active:
            logger.info("bridge.reply_dropped_cancelled", channel=sub.channel_name)
            return

        reply = ChatMessage.new(await self._author_name(), self._sentinel_prefix + answer)
        try:
            await sub.session.chat.publish(sub.channel_name, reply)
        except Exception as e:
            logger.error(
                "bridge.publish_failed",
                channel=sub.channel_name,
                error=str(e),
            )
            return
        logger.info(
            "bridge.reply_published",
            channel=sub.channel_name,
            message_id=reply.id,
            elapsed=round(time.monotonic() - started, 2),
        )

    async def _run_digest(self, sub: Subscription) -> None:
        digest = cast("DigestPipeline", self._digest)
        if sub._digest_state is not _DigestState.ARMED:
            logger.debug("bridge.digest_trigger_ignored", state=sub.digest_state)
            return

        sub._digest_state = _DigestState.RUNNING
        logger.info("bridge.digest_triggered", workspace=sub.session.name)
        try:
            outcome = await digest.run(sub.session, is_live=lambda: sub.is_active)
        except DigestError as e:
            # Re-arm so a human can re-send the trigger.
            sub._digest_state = _DigestState.ARMED
            logger.error("bridge.digest_failed", workspace=sub.session.name, error=str(e))
            return
        except Exception:
            sub._digest_state = _DigestState.ARMED
            logger.error("bridge.digest_crashed", workspace=sub.session.name, exc_info=True)
            return

        if outcome is DigestOutcome.DELIVERY_FAILED:
            sub._digest_state = _DigestState.ARMED
            logger.warning("bridge.digest_rearmed", workspace=sub.session.name, outcome=outcome.value)
            return

        sub._digest_state = _DigestState.DONE
        logger.info("bridge.digest_finished", outcome=outcome.value)
        if sub.is_active and self._on_digest_complete is not None:
            self._on_digest_complete(outcome)

    async def _author_name(self) -> str:
        if self._identity is None:
            return _FALLBACK_AUTHOR
        try:
            return await self._identity.identity_name()
        except Exception as e:
            logger.warning("bridge.identity_name_failed", error=str(e))
            return _FALLBACK_AUTHOR
