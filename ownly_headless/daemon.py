"""
Ownly Daemon — the long-running control-plane process.

Startup sequence:
  1. write the PID file (refusing to start twice)
  2. bootstrap the network identity (fatal on IdentityError)
  3. resume the last recorded agent, if any
  4. open the HTTP control gateway
  5. wait for a shutdown signal, a stop request, or a finished digest run

Start with: ownly-headless serve
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from typing import Optional

import structlog

from ownly_headless.api.generate import AnthropicTextGenerator, GeneratorInitError
from ownly_headless.backends import Backend, load_backend
from ownly_headless.channels.bridge import ChannelBridge
from ownly_headless.config import OwnlyConfig
from ownly_headless.digest import DigestOutcome, DigestPipeline
from ownly_headless.gateway import ControlGateway
from ownly_headless.identity import CodeProvider, IdentityBootstrapper
from ownly_headless.lifecycle import AgentLifecycleManager
from ownly_headless.mail import SmtpMailTransport
from ownly_headless.metadata import FileMetadataStore
from ownly_headless.run_state import RunStateStore
from ownly_headless.services import MailTransport, TextGenerator
from ownly_headless.types import AgentMode, DigestJob
from ownly_headless.workspace import WorkspaceConnector

logger = structlog.get_logger(__name__)


class OwnlyDaemon:
    """
    Wires the control plane together and keeps it running.

    Collaborators can be injected (tests, embedding); anything not given is
    built from config: the backend from OWNLY_BACKEND, the generator from the
    Anthropic settings, the mail transport from the SMTP settings.
    """

    def __init__(
        self,
        config: OwnlyConfig,
        *,
        backend: Optional[Backend] = None,
        generator: Optional[TextGenerator] = None,
        mail: Optional[MailTransport] = None,
        code_provider: Optional[CodeProvider] = None,
    ) -> None:
        self._config = config
        self._shutdown_event = asyncio.Event()
        self._shutdown_reason: str = ""
        self._pid_file = config.daemon.pid_file
        self._owns_pid_file = False

        self._backend = backend or load_backend(config.workspace.backend)
        metadata = self._backend.metadata or FileMetadataStore(config.workspace.metadata_path)

        if generator is None:
            try:
                generator = AnthropicTextGenerator(config.generation)
            except GeneratorInitError as e:
                # Digest-only nodes run without a model; reply mode is refused at attach.
                logger.warning("daemon.generator_unavailable", error=str(e))
        self._generator = generator

        digest = DigestPipeline(
            mail or SmtpMailTransport(config.mail),
            template_path=config.digest.template_path,
            sender=config.mail.sender,
            recipients=config.mail.recipients,
            bcc=config.mail.bcc,
            subject=config.digest.subject,
            job=DigestJob(
                source_document_path=config.digest.document_path,
                header_cut_count=config.digest.header_cut_count,
            ),
            settle_seconds=config.digest.settle_seconds,
        )

        self.identity = IdentityBootstrapper(self._backend.identity, code_provider)
        self.bridge = ChannelBridge(
            generator=generator,
            digest=digest,
            identity=self._backend.identity,
            sentinel_prefix=config.bridge.sentinel_prefix,
            on_digest_complete=self._on_digest_complete,
        )
        self._run_state = RunStateStore(config.daemon.run_state_path)
        self.lifecycle = AgentLifecycleManager(
            WorkspaceConnector(
                self._backend.sync,
                metadata,
                trusted=config.workspace.join_trusted,
                relaxed_certs=config.workspace.join_relaxed_certs,
                relax_certificates=config.workspace.relax_certificates,
            ),
            self.bridge,
            default_mode=AgentMode(config.bridge.mode),
            settle_seconds=config.workspace.settle_seconds,
            run_state=self._run_state,
        )
        self.gateway = ControlGateway(self.lifecycle)

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def shutdown_reason(self) -> str:
        return self._shutdown_reason

    async def bootstrap(self) -> None:
        """Obtain the network identity; raises IdentityError on terminal failure."""
        await self.identity.ensure_identity(self._config.identity.principal)

    async def run(self, *, serve_http: bool = True) -> None:
        """Full daemon lifecycle: init → serve → shutdown."""
        self._write_pid_file()
        try:
            await self.bootstrap()
            if self._config.daemon.resume_on_start:
                await self.lifecycle.resume()
            if serve_http:
                await self.gateway.start(
                    self._config.daemon.http_host,
                    self._config.daemon.http_port,
                )
            logger.info("daemon.running", pid=os.getpid())
            await self.wait_for_shutdown()
        finally:
            await self._cleanup(serve_http=serve_http)

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    # ------------------------------------------------------------------
    # Shutdown & cleanup
    # ------------------------------------------------------------------

    def request_shutdown(self, reason: str) -> None:
        if not self._shutdown_event.is_set():
            self._shutdown_reason = reason
            logger.info("daemon.shutdown_requested", reason=reason)
        self._shutdown_event.set()

    def _on_digest_complete(self, outcome: DigestOutcome) -> None:
        # Digest mode is a single scheduled run; the process ends with it and
        # a restart must not resume the finished agent.
        self._run_state.clear()
        self.request_shutdown(f"digest_{outcome.value}")

    async def _cleanup(self, *, serve_http: bool) -> None:
        if serve_http:
            await self.gateway.stop()
        await self.lifecycle.stop("shutdown")
        self.identity.cancel()
        if self._owns_pid_file:
            try:
                self._pid_file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("daemon.cleanup_unlink_failed", path=str(self._pid_file), error=str(e))
        logger.info("daemon.stopped", reason=self._shutdown_reason)

    def _write_pid_file(self) -> None:
        """Write PID file, detecting stale files from crashed processes."""
        self._pid_file.parent.mkdir(parents=True, exist_ok=True)
        if self._pid_file.exists():
            try:
                existing_pid = int(self._pid_file.read_text().strip())
                # Check if process is actually alive
                os.kill(existing_pid, 0)
                logger.error("daemon.already_running", pid=existing_pid)
                sys.exit(1)
            except (ValueError, ProcessLookupError, PermissionError):
                logger.info("daemon.stale_pid_file_removed", path=str(self._pid_file))
                try:
                    self._pid_file.unlink()
                except OSError:
                    pass
        self._pid_file.write_text(str(os.getpid()))
        self._owns_pid_file = True

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Install SIGINT/SIGTERM handlers for graceful shutdown."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(
                    sig, self.request_shutdown, f"signal_{sig.name.lower()}"
                )
            except NotImplementedError:
                pass
