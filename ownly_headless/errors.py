"""
Error taxonomy for the agent control plane.

Every failure the control plane reports derives from ``OwnlyError`` so the
HTTP surface and the CLI can map them uniformly.  Errors raised by external
collaborators are wrapped, never retried.
"""

from __future__ import annotations


class OwnlyError(Exception):
    """Base class for all control-plane errors."""


class ValidationError(OwnlyError):
    """Input rejected before any side effect (bad PSK, bad template, bad request)."""


class IdentityError(OwnlyError):
    """The identity service reported a terminal failure; startup must abort."""


class JoinError(OwnlyError):
    """The sync service failed to join or resume a workspace."""


class ChannelNotFoundError(OwnlyError):
    """The requested chat channel does not exist in the workspace."""

    def __init__(self, channel_name: str, available: list[str]) -> None:
        self.channel_name = channel_name
        self.available = list(available)
        super().__init__(f"Channel #{channel_name} not found")


class DigestError(OwnlyError):
    """A digest run failed; fatal to that run only."""


class TemplateError(DigestError, ValidationError):
    """The mail template is missing one of its ``<hr>`` delimiters."""


class DeliveryError(OwnlyError):
    """The mail transport failed to deliver a message."""


class StartError(OwnlyError):
    """An agent could not be started; no handle was installed."""
