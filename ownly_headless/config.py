# ownly_headless/config.py
"""
Configuration for the Ownly headless agent.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic.  Every component receives
its slice of config from ``OwnlyConfig``; nothing reads the environment directly.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above the package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single str         → ["value"]
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → ["a", "b"]
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                return _coerce_str_list(json.loads(stripped))
            except json.JSONDecodeError:
                pass
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


# Annotated type for list[str] fields that accept bare values, comma-separated,
# and JSON arrays from environment variables.  NoDecode keeps pydantic-settings
# from JSON-decoding the raw value first.
StrList = Annotated[list[str], NoDecode, BeforeValidator(_coerce_str_list)]


class IdentityConfig(BaseSettings):
    """Who this node claims to be on the network."""

    principal: str = Field("agent@ownly.local", alias="OWNLY_PRINCIPAL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize_principal(self) -> "IdentityConfig":
        self.principal = self.principal.strip()
        if not self.principal:
            raise ValueError("OWNLY_PRINCIPAL must not be empty.")
        return self


class WorkspaceConfig(BaseSettings):
    """Join policy and sync backend selection."""

    backend: str = Field("ownly_headless.backends.memory:create_backend", alias="OWNLY_BACKEND")
    metadata_path: Path = Field(Path("./ownly_data/workspaces.json"), alias="OWNLY_METADATA_PATH")
    # Policy flags passed through to the sync service on first join.
    join_trusted: bool = Field(False, alias="OWNLY_JOIN_TRUSTED")
    join_relaxed_certs: bool = Field(False, alias="OWNLY_JOIN_RELAXED_CERTS")
    # Explicit trust relaxation persisted on the stored metadata after joining.
    relax_certificates: bool = Field(False, alias="OWNLY_RELAX_CERTIFICATES")
    # Wait for sync propagation before reading channels. Heuristic, not a guarantee.
    settle_seconds: float = Field(2.0, alias="OWNLY_SYNC_SETTLE_SECONDS")

    _DEFAULT_METADATA: Path = Path("./ownly_data/workspaces.json")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize_limits(self) -> "WorkspaceConfig":
        self.settle_seconds = max(0.0, float(self.settle_seconds))
        self.backend = self.backend.strip()
        if ":" not in self.backend:
            raise ValueError("OWNLY_BACKEND must look like 'package.module:factory'.")
        return self


class BridgeConfig(BaseSettings):
    """Channel bridge dispatch settings."""

    mode: Literal["reply", "digest"] = Field("reply", alias="OWNLY_AGENT_MODE")
    sentinel_prefix: str = Field("AGENT: ", alias="OWNLY_SENTINEL_PREFIX")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def check_sentinel(self) -> "BridgeConfig":
        if not self.sentinel_prefix:
            raise ValueError("OWNLY_SENTINEL_PREFIX must not be empty.")
        return self


class DigestConfig(BaseSettings):
    """Which document to digest and how to wrap it."""

    document_path: str = Field("agenda.md", alias="OWNLY_DIGEST_DOCUMENT")
    header_cut_count: int = Field(3, alias="OWNLY_DIGEST_HEADER_CUT")
    template_path: Path = Field(Path("./templates/digest.html"), alias="OWNLY_DIGEST_TEMPLATE")
    settle_seconds: float = Field(2.0, alias="OWNLY_DIGEST_SETTLE_SECONDS")
    subject: str = Field("Agenda digest", alias="OWNLY_DIGEST_SUBJECT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize_limits(self) -> "DigestConfig":
        self.document_path = self.document_path.strip().lstrip("/")
        self.header_cut_count = max(1, int(self.header_cut_count))
        self.settle_seconds = max(0.0, float(self.settle_seconds))
        return self


class MailConfig(BaseSettings):
    """SMTP transport and the fixed recipient set."""

    smtp_host: str = Field("localhost", alias="OWNLY_SMTP_HOST")
    smtp_port: int = Field(587, alias="OWNLY_SMTP_PORT")
    smtp_security: Literal["none", "starttls", "ssl"] = Field(
        "starttls", alias="OWNLY_SMTP_SECURITY"
    )
    smtp_username: Optional[str] = Field(None, alias="OWNLY_SMTP_USERNAME")
    smtp_password: Optional[str] = Field(None, alias="OWNLY_SMTP_PASSWORD")
    smtp_timeout: float = Field(30.0, alias="OWNLY_SMTP_TIMEOUT")
    sender: str = Field("agent@ownly.local", alias="OWNLY_MAIL_FROM")
    recipients: StrList = Field(default_factory=list, alias="OWNLY_MAIL_TO")
    bcc: StrList = Field(default_factory=list, alias="OWNLY_MAIL_BCC")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize(self) -> "MailConfig":
        self.smtp_port = max(1, int(self.smtp_port))
        self.smtp_timeout = max(1.0, float(self.smtp_timeout))
        if isinstance(self.smtp_username, str):
            self.smtp_username = self.smtp_username.strip() or None
        return self


class GenerationConfig(BaseSettings):
    """Text-generation backend used by reply mode."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field("claude-sonnet-4-5-20250929", alias="OWNLY_MODEL")
    max_tokens: int = Field(1024, alias="OWNLY_MAX_TOKENS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize_limits(self) -> "GenerationConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        return self


class DaemonConfig(BaseSettings):
    """Configuration for the long-running control-plane process."""

    http_host: str = Field("127.0.0.1", alias="OWNLY_HTTP_HOST")
    http_port: int = Field(3000, alias="OWNLY_HTTP_PORT")
    data_dir: Path = Field(Path("./ownly_data"), alias="OWNLY_DATA_DIR")
    run_state_path: Path = Field(Path("./ownly_data/run_state.json"), alias="OWNLY_RUN_STATE_PATH")
    pid_file: Path = Field(Path("./ownly_data/ownly.pid"), alias="OWNLY_PID_FILE")
    resume_on_start: bool = Field(True, alias="OWNLY_RESUME_ON_START")

    # Factory defaults for detecting whether paths were explicitly set.
    _DEFAULT_RUN_STATE: Path = Path("./ownly_data/run_state.json")
    _DEFAULT_PID: Path = Path("./ownly_data/ownly.pid")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore"}

    @model_validator(mode="after")
    def normalize_limits(self) -> "DaemonConfig":
        self.http_port = int(self.http_port)
        if not 0 <= self.http_port <= 65535:
            raise ValueError("OWNLY_HTTP_PORT must be between 0 and 65535.")
        return self


class OwnlyConfig:
    """
    Master configuration that composes all component configs.

    A missing ANTHROPIC_API_KEY is not an error here; only reply mode needs it.
    """

    def __init__(self) -> None:
        self.identity = IdentityConfig()
        self.workspace = WorkspaceConfig()
        self.bridge = BridgeConfig()
        self.digest = DigestConfig()
        self.mail = MailConfig()
        self.generation = GenerationConfig()
        self.daemon = DaemonConfig()

        # Derive paths from data_dir when they still equal factory defaults.
        # NOTE: instance access (self.daemon._DEFAULT_*), Pydantic wraps
        # class-level private attrs in ModelPrivateAttr descriptors.
        data_dir = self.daemon.data_dir
        if self.daemon.run_state_path == self.daemon._DEFAULT_RUN_STATE:
            self.daemon.run_state_path = data_dir / "run_state.json"
        if self.daemon.pid_file == self.daemon._DEFAULT_PID:
            self.daemon.pid_file = data_dir / "ownly.pid"
        if self.workspace.metadata_path == self.workspace._DEFAULT_METADATA:
            self.workspace.metadata_path = data_dir / "workspaces.json"

        self._resolve_paths()

        if self.bridge.mode == "digest" and not self.mail.recipients:
            logger.warning("config.digest_without_recipients", hint="set OWNLY_MAIL_TO")

    def _resolve_paths(self) -> None:
        """Resolve relative Path fields against the project root (where .env lives),
        not the current working directory."""

        def _resolve(p: Path) -> Path:
            if p.is_absolute():
                return p
            return (_PROJECT_ROOT / p).resolve()

        self.daemon.data_dir = _resolve(self.daemon.data_dir)
        self.daemon.run_state_path = _resolve(self.daemon.run_state_path)
        self.daemon.pid_file = _resolve(self.daemon.pid_file)
        self.workspace.metadata_path = _resolve(self.workspace.metadata_path)
        self.digest.template_path = _resolve(self.digest.template_path)
