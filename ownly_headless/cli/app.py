"""CLI application — Click-based command hierarchy for ownly-headless.

  ownly-headless [serve]                   daemon with the HTTP control surface
  ownly-headless run WORKSPACE --psk HEX   one agent in the foreground
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Optional

import click

from ownly_headless.types import AgentMode


def async_cmd(func):
    """Decorator to run an async Click command via asyncio.run()."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


@click.group(invoke_without_command=True)
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, no_color: bool) -> None:
    """ownly-headless - chat agents for shared workspaces."""
    ctx.ensure_object(dict)
    ctx.obj["no_color"] = no_color

    if ctx.invoked_subcommand is None:
        # Default: run the daemon
        ctx.invoke(serve_cmd)


@click.command("serve")
def serve_cmd() -> None:
    """Start the daemon and its HTTP control surface (foreground)."""
    from ownly_headless.main import configure_logging

    configure_logging()

    from ownly_headless.config import OwnlyConfig
    from ownly_headless.daemon import OwnlyDaemon
    from ownly_headless.errors import IdentityError

    config = OwnlyConfig()

    async def _serve() -> None:
        daemon = OwnlyDaemon(config)
        daemon.install_signal_handlers(asyncio.get_running_loop())
        await daemon.run()

    try:
        asyncio.run(_serve())
    except IdentityError as e:
        click.echo(f"Identity bootstrap failed: {e}", err=True)
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


@click.command("run")
@click.argument("workspace")
@click.option("--psk", "psk_hex", required=True, help="Workspace preshared key (64 hex chars).")
@click.option("--channel", default="", help="Channel to attach to. Omit to list channels.")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in AgentMode]),
    default=None,
    help="Agent behavior (overrides OWNLY_AGENT_MODE).",
)
@click.pass_context
@async_cmd
async def run_cmd(
    ctx: click.Context,
    workspace: str,
    psk_hex: str,
    channel: str,
    mode: Optional[str],
) -> None:
    """Attach one agent to WORKSPACE and print the channel transcript."""
    from ownly_headless.cli.formatters import (
        build_channel_table,
        format_message,
        get_console,
    )
    from ownly_headless.config import OwnlyConfig
    from ownly_headless.daemon import OwnlyDaemon
    from ownly_headless.errors import ChannelNotFoundError, OwnlyError
    from ownly_headless.types import parse_psk_hex

    console = get_console(no_color=bool((ctx.obj or {}).get("no_color")))
    try:
        psk = parse_psk_hex(psk_hex)
    except OwnlyError as e:
        raise click.BadParameter(str(e), param_hint="--psk")

    daemon = OwnlyDaemon(OwnlyConfig())
    prefix = daemon.bridge.sentinel_prefix
    try:
        await daemon.bootstrap()

        if not channel:
            listing = await daemon.lifecycle.list_channels(workspace, psk)
            if listing.channels:
                console.print(build_channel_table(workspace, listing.channels))
            else:
                console.print("No channels found")
            return

        try:
            handle = await daemon.lifecycle.start_or_replace(workspace, psk, channel, mode)
        except ChannelNotFoundError as e:
            console.print(str(e), style="red", markup=False)
            if e.available:
                console.print(build_channel_table(workspace, e.available))
            else:
                console.print("No channels found")
            ctx.exit(1)

        for message in handle.subscription.history:
            console.print(format_message(message, prefix))

        def _print_live(channel_name: str, message: Any) -> None:
            if channel_name == handle.channel_name:
                console.print(format_message(message, prefix))

        unsubscribe = handle.session.chat.subscribe(_print_live)
        console.print(
            f"Agent on #{handle.channel_name} ({handle.mode.value}). Press Ctrl-C to stop.",
            style="green",
            markup=False,
        )
        daemon.install_signal_handlers(asyncio.get_running_loop())
        try:
            await daemon.wait_for_shutdown()
        finally:
            unsubscribe()
    except OwnlyError as e:
        console.print(str(e), style="red", markup=False)
        ctx.exit(1)
    finally:
        await daemon.lifecycle.stop("cli_exit")
        daemon.identity.cancel()


# ---------------------------------------------------------------------------
# Register subcommands
# ---------------------------------------------------------------------------

cli.add_command(serve_cmd)
cli.add_command(run_cmd)
