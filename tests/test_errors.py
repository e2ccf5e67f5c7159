"""Tests for ownly_headless.errors — the error taxonomy."""

from __future__ import annotations

from ownly_headless.errors import (
    ChannelNotFoundError,
    DeliveryError,
    DigestError,
    IdentityError,
    JoinError,
    OwnlyError,
    StartError,
    TemplateError,
    ValidationError,
)


def test_all_errors_share_base() -> None:
    for cls in (
        ValidationError,
        IdentityError,
        JoinError,
        ChannelNotFoundError,
        DigestError,
        TemplateError,
        DeliveryError,
        StartError,
    ):
        assert issubclass(cls, OwnlyError)


def test_template_error_is_digest_and_validation_error() -> None:
    err = TemplateError("no <hr>")
    assert isinstance(err, DigestError)
    assert isinstance(err, ValidationError)


def test_channel_not_found_carries_available() -> None:
    err = ChannelNotFoundError("ops", ["general", "random"])
    assert str(err) == "Channel #ops not found"
    assert err.channel_name == "ops"
    assert err.available == ["general", "random"]
