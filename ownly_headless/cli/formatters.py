"""CLI formatters — transcript lines and channel tables."""

from __future__ import annotations

import datetime

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ownly_headless.types import ChatMessage


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def format_timestamp(timestamp_millis: int) -> str:
    """Local wall-clock time of a chat message."""
    moment = datetime.datetime.fromtimestamp(timestamp_millis / 1000)
    return moment.strftime("%H:%M:%S")


def format_message(message: ChatMessage, sentinel_prefix: str = "") -> Text:
    """One transcript line: time, author, text. Agent-written lines are dimmed."""
    line = Text()
    line.append(format_timestamp(message.timestamp_millis), style="dim")
    line.append(" ")
    line.append(message.author, style="bold cyan")
    line.append(": ")
    own = bool(sentinel_prefix) and message.text.startswith(sentinel_prefix)
    line.append(message.text, style="dim" if own else "")
    return line


def build_channel_table(workspace_name: str, channels: list[str]) -> Table:
    """Table of a workspace's channels."""
    table = Table(title=f"Channels in {workspace_name}", show_header=True, header_style="bold")
    table.add_column("Channel")
    for name in channels:
        table.add_row(f"#{name}")
    return table
