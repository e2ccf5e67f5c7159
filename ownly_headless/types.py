"""
Core data types shared across the control plane.

This module defines lightweight data containers that cross component
boundaries.  They live here rather than in a specific component to avoid
circular imports.
"""

from __future__ import annotations

import binascii
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote

from ownly_headless.errors import ValidationError

# Pre-shared workspace keys are raw 32-byte secrets (64 hex characters on the wire).
PSK_LENGTH: int = 32


def validate_psk(psk: bytes) -> bytes:
    """Return *psk* unchanged if it is exactly 32 bytes, else raise ValidationError."""
    if not isinstance(psk, (bytes, bytearray)):
        raise ValidationError("PSK must be bytes")
    if len(psk) != PSK_LENGTH:
        raise ValidationError(
            f"PSK must be exactly {PSK_LENGTH} bytes ({PSK_LENGTH * 2} hex characters)"
        )
    return bytes(psk)


def parse_psk_hex(value: str) -> bytes:
    """Decode a hex-encoded PSK and validate its length."""
    if not isinstance(value, str):
        raise ValidationError("PSK must be a hex string")
    try:
        raw = bytes.fromhex(value.strip())
    except (ValueError, binascii.Error) as exc:
        raise ValidationError(f"PSK is not valid hex: {exc}") from exc
    return validate_psk(raw)


def escape_workspace_name(name: str) -> str:
    """URL-escape a workspace name for use as a sync-service path segment."""
    return quote(name, safe="")


class AgentMode(str, Enum):
    """Dispatch behavior of a channel subscription, fixed at agent start."""

    REPLY = "reply"
    DIGEST = "digest"

    @classmethod
    def parse(cls, value: "str | AgentMode | None", default: "AgentMode") -> "AgentMode":
        if value is None or value == "":
            return default
        if isinstance(value, AgentMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationError(
                f"mode must be one of: {', '.join(m.value for m in cls)}"
            ) from exc


@dataclass(frozen=True)
class WorkspaceDescriptor:
    """A named workspace and the pre-shared key that unlocks it."""

    name: str
    preshared_key: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("workspace name must not be empty")
        validate_psk(self.preshared_key)


@dataclass
class WorkspaceMetadata:
    """Locally persisted record of a joined workspace."""

    name: str
    label: str = ""
    trusted: bool = False
    relaxed_certs: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkspaceMetadata":
        return cls(
            name=str(data.get("name", "")),
            label=str(data.get("label", "")),
            trusted=bool(data.get("trusted", False)),
            relaxed_certs=bool(data.get("relaxed_certs", False)),
        )


@dataclass(frozen=True)
class ChatMessage:
    """One entry of a channel's ordered history."""

    id: str
    author: str
    timestamp_millis: int
    text: str

    @classmethod
    def new(cls, author: str, text: str) -> "ChatMessage":
        """Build an outbound message with a fresh id and the current timestamp."""
        return cls(
            id=uuid.uuid4().hex,
            author=author,
            timestamp_millis=int(time.time() * 1000),
            text=text,
        )


class DigestOutcome(str, Enum):
    """How a digest run ended."""

    SENT = "sent"
    NOTHING_TO_SEND = "nothing_to_send"
    DELIVERY_FAILED = "delivery_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DigestJob:
    """Which document to excerpt and where to cut it."""

    source_document_path: str = "agenda.md"
    header_cut_count: int = 3


@dataclass
class DeliveryInfo:
    """Result of a successful mail delivery."""

    message_id: str
    accepted: list[str] = field(default_factory=list)
