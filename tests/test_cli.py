"""Tests for ownly_headless/cli — Click commands and transcript formatting."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from conftest import PSK, PSK_HEX, WORKSPACE, FakeGenerator, FakeMail
from ownly_headless.backends import Backend
from ownly_headless.backends.memory import LoopbackIdentityService, MemorySyncService
from ownly_headless.cli.app import async_cmd, cli
from ownly_headless.cli.formatters import build_channel_table, format_message, get_console
from ownly_headless.daemon import OwnlyDaemon
from ownly_headless.errors import IdentityError
from ownly_headless.types import ChatMessage


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class TestFormatters:
    def test_format_message(self) -> None:
        line = format_message(ChatMessage("1", "alice", 0, "hello"))
        assert line.plain.endswith("alice: hello")

    def test_own_message_dimmed(self) -> None:
        line = format_message(ChatMessage("1", "bot", 0, "AGENT: hi"), "AGENT: ")
        assert any(span.style == "dim" for span in line.spans[1:])

    def test_channel_table(self) -> None:
        table = build_channel_table("team", ["general"])
        assert table.title == "Channels in team"
        assert table.row_count == 1

    def test_console_no_color(self) -> None:
        assert get_console(no_color=True).no_color is True


class TestAsyncCmd:
    def test_wraps_async_function(self) -> None:
        async def my_func():
            return 42

        assert async_cmd(my_func)() == 42


# ---------------------------------------------------------------------------
# run command
# ---------------------------------------------------------------------------


@pytest.fixture
def env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("OWNLY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("OWNLY_SYNC_SETTLE_SECONDS", "0")
    for name in ("OWNLY_RUN_STATE_PATH", "OWNLY_PID_FILE", "OWNLY_METADATA_PATH", "OWNLY_AGENT_MODE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def daemon_factory(env, sync: MemorySyncService):
    """Patch the CLI's daemon construction to use the loopback backend."""
    created: list[OwnlyDaemon] = []

    def _factory(identity: LoopbackIdentityService | None = None):
        def _build(config, **kwargs):
            daemon = OwnlyDaemon(
                config,
                backend=Backend(
                    identity=identity or LoopbackIdentityService(has_credential=True),
                    sync=sync,
                ),
                generator=FakeGenerator(),
                mail=FakeMail(),
            )
            daemon.install_signal_handlers = MagicMock()  # type: ignore[method-assign]
            daemon.wait_for_shutdown = AsyncMock()  # type: ignore[method-assign]
            created.append(daemon)
            return daemon

        return patch("ownly_headless.daemon.OwnlyDaemon", side_effect=_build)

    _factory.created = created  # type: ignore[attr-defined]
    return _factory


class TestRunCommand:
    def test_lists_channels_without_channel(self, daemon_factory) -> None:
        with daemon_factory():
            result = CliRunner().invoke(cli, ["run", WORKSPACE, "--psk", PSK_HEX])
        assert result.exit_code == 0, result.output
        assert "#general" in result.output
        assert "#random" in result.output

    def test_no_channels(self, daemon_factory, sync: MemorySyncService) -> None:
        sync.seed_workspace("quiet", PSK, channels=[])
        with daemon_factory():
            result = CliRunner().invoke(cli, ["run", "quiet", "--psk", PSK_HEX])
        assert result.exit_code == 0
        assert "No channels found" in result.output

    def test_unknown_channel_exits_1(self, daemon_factory) -> None:
        with daemon_factory():
            result = CliRunner().invoke(cli, ["run", WORKSPACE, "--psk", PSK_HEX, "--channel", "ops"])
        assert result.exit_code == 1
        assert "Channel #ops not found" in result.output
        assert "#general" in result.output

    def test_attach_prints_history(self, daemon_factory, sync: MemorySyncService) -> None:
        sync.workspaces[WORKSPACE].chat.deliver("general", "alice", "earlier message")
        with daemon_factory():
            result = CliRunner().invoke(
                cli, ["run", WORKSPACE, "--psk", PSK_HEX, "--channel", "general"]
            )
        assert result.exit_code == 0, result.output
        assert "alice: earlier message" in result.output
        assert "Agent on #general (reply)" in result.output
        daemon = daemon_factory.created[-1]
        assert daemon.lifecycle.active is None
        assert sync.workspaces[WORKSPACE].chat.subscriber_count == 0

    def test_short_psk_is_usage_error(self, daemon_factory) -> None:
        with daemon_factory():
            result = CliRunner().invoke(cli, ["run", WORKSPACE, "--psk", "00" * 31])
        assert result.exit_code == 2
        assert "32 bytes" in result.output

    def test_invalid_mode(self, daemon_factory) -> None:
        with daemon_factory():
            result = CliRunner().invoke(
                cli, ["run", WORKSPACE, "--psk", PSK_HEX, "--channel", "general", "--mode", "yell"]
            )
        assert result.exit_code == 2

    def test_identity_failure_exits_1(self, daemon_factory) -> None:
        identity = LoopbackIdentityService()
        identity.connect_to_network = AsyncMock(side_effect=OSError("offline"))  # type: ignore[method-assign]
        with daemon_factory(identity):
            result = CliRunner().invoke(cli, ["run", WORKSPACE, "--psk", PSK_HEX])
        assert result.exit_code == 1
        assert "offline" in result.output


# ---------------------------------------------------------------------------
# serve command
# ---------------------------------------------------------------------------


class TestServeCommand:
    def test_default_command_is_serve(self, env) -> None:
        daemon = MagicMock()
        daemon.run = AsyncMock()
        with patch("ownly_headless.daemon.OwnlyDaemon", return_value=daemon):
            result = CliRunner().invoke(cli, [])
        assert result.exit_code == 0, result.output
        daemon.run.assert_awaited_once()
        daemon.install_signal_handlers.assert_called_once()

    def test_identity_failure_exits_1(self, env) -> None:
        daemon = MagicMock()
        daemon.run = AsyncMock(side_effect=IdentityError("no credential"))
        with patch("ownly_headless.daemon.OwnlyDaemon", return_value=daemon):
            result = CliRunner().invoke(cli, ["serve"])
        assert result.exit_code == 1
        assert "Identity bootstrap failed: no credential" in result.output
