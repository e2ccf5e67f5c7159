"""
Main — process entry point.

Configures logging once, then hands over to the click command group in
``ownly_headless.cli.app``.  Running ``python -m ownly_headless.main`` is the
same as running ``ownly-headless``.
"""

from __future__ import annotations

import logging
import os

import structlog

# Event-dict keys whose values must never reach a log sink in clear text.
_SECRET_KEYS = frozenset({
    "psk",
    "preshared_key",
    "preshared_key_hex",
    "presharedKeyHex",
    "password",
    "smtp_password",
    "api_key",
    "code",
})


def _redact_secret_fields(logger, method_name, event_dict):
    """
    Structlog processor that masks workspace secrets and credentials.

    Keeps only the length of the value so mismatched PSKs are still
    diagnosable from logs.
    """
    for key in _SECRET_KEYS:
        if key in event_dict:
            val = event_dict[key]
            size = len(val) if isinstance(val, (str, bytes, bytearray)) else 0
            event_dict[key] = f"[redacted:{size}]"
    return event_dict


_logging_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure structlog and standard-library logging for entry points.

    Safe to call more than once; later calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    level_name = (level or os.environ.get("OWNLY_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            _redact_secret_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    configure_logging()
    from ownly_headless.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
