"""
Chat channel bridging — the agent's attachment to a workspace chat channel.

Usage (from ownly_headless/lifecycle.py or the CLI):
    from ownly_headless.channels import ChannelBridge
"""

from ownly_headless.channels.bridge import (
    DEFAULT_SENTINEL_PREFIX,
    CancelToken,
    ChannelBridge,
    Subscription,
)
from ownly_headless.channels.formatting import markdown_to_html, render_inline, strip_html_tags

__all__ = [
    "DEFAULT_SENTINEL_PREFIX",
    "CancelToken",
    "ChannelBridge",
    "Subscription",
    "markdown_to_html",
    "render_inline",
    "strip_html_tags",
]
