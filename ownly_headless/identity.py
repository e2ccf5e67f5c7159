"""
Identity Bootstrap — obtaining a signing credential before anything else runs.

Nothing downstream is meaningful without a network identity, so this runs
once at process start.  The identity service drives a challenge/response loop
and calls back into us with a status tag each round; we answer with a
verification code (or an empty string when there is nothing to submit).

The callback is a thin executor over ``next_action()``: the transition logic
is a pure function of (state, status) that returns an explicit action.  That
keeps the loop inspectable in tests and lets ``cancel()`` short-circuit any
further rounds without the service's cooperation.

States:
    NO_CREDENTIAL → CHALLENGE_ISSUED → {CODE_SUBMITTED | REJECTED} → VALID
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

import click
import structlog

from ownly_headless.errors import IdentityError
from ownly_headless.services import IdentityService

logger = structlog.get_logger(__name__)

STATUS_NEED_CODE = "need-code"
STATUS_WRONG_CODE = "wrong-code"

CODE_PROMPT = "Enter verification code from email"

# Receives a prompt, returns the code the operator typed.
CodeProvider = Callable[[str], Awaitable[str]]


class ChallengeState(str, Enum):
    NO_CREDENTIAL = "no_credential"
    CHALLENGE_ISSUED = "challenge_issued"
    CODE_SUBMITTED = "code_submitted"
    REJECTED = "rejected"
    VALID = "valid"


@dataclass(frozen=True)
class SubmitCode:
    """Ask the code provider for a verification code and hand it back."""

    prompt: str = CODE_PROMPT


@dataclass(frozen=True)
class Retry:
    """The last code was wrong; answer empty and wait for the next round."""

    reason: str


@dataclass(frozen=True)
class Wait:
    """Unrecognised status; stay pending, answer empty."""

    status: str


ChallengeAction = Union[SubmitCode, Retry, Wait]


async def prompt_verification_code(prompt: str) -> str:
    """Default code provider: ask on the terminal without blocking the event loop."""
    code = await asyncio.to_thread(
        click.prompt, prompt, default="", show_default=False
    )
    return str(code).strip()


class IdentityBootstrapper:
    """Drives the identity service until a valid credential exists.

    Never stores the credential itself; it only observes and drives
    transitions owned by the identity service.
    """

    def __init__(
        self,
        service: IdentityService,
        code_provider: Optional[CodeProvider] = None,
    ) -> None:
        self._service = service
        self._code_provider = code_provider or prompt_verification_code
        self._state = ChallengeState.NO_CREDENTIAL
        self._cancelled = False
        self._rounds = 0
        # Serialises prompts if the service re-enters the callback concurrently.
        self._prompt_lock = asyncio.Lock()

    @property
    def state(self) -> ChallengeState:
        return self._state

    @property
    def rounds(self) -> int:
        """Number of status callbacks observed so far."""
        return self._rounds

    def cancel(self) -> None:
        """Stop answering challenge rounds; every further callback returns ''."""
        self._cancelled = True

    async def ensure_identity(self, principal: str) -> None:
        """Make sure a valid credential exists for *principal*.

        Idempotent: returns immediately when the service already holds one.
        Raises IdentityError on terminal failure.
        """
        try:
            await self._service.connect_to_network()
        except Exception as e:
            raise IdentityError(f"Could not connect to network: {e}") from e

        if await self._service.has_credential():
            self._state = ChallengeState.VALID
            logger.debug("identity.credential_present", principal=principal)
            return

        logger.info("identity.no_credential", principal=principal)
        self._state = ChallengeState.CHALLENGE_ISSUED
        logger.info("identity.challenge_started", principal=principal)
        try:
            await self._service.issue_challenge(principal, self._on_status)
        except IdentityError:
            raise
        except Exception as e:
            self._state = ChallengeState.NO_CREDENTIAL
            raise IdentityError(f"Identity challenge failed: {e}") from e

        if not await self._service.has_credential():
            self._state = ChallengeState.NO_CREDENTIAL
            raise IdentityError(
                f"Identity challenge for {principal} finished without a credential"
            )

        self._state = ChallengeState.VALID
        logger.info("identity.challenge_completed", principal=principal, rounds=self._rounds)

    def next_action(self, status: str) -> ChallengeAction:
        """Pure transition: decide what to do about *status* and update state."""
        if status == STATUS_NEED_CODE:
            return SubmitCode()
        if status == STATUS_WRONG_CODE:
            self._state = ChallengeState.REJECTED
            return Retry(reason="Invalid verification code")
        return Wait(status=status)

    async def _on_status(self, status: str) -> str:
        """Callback handed to the identity service; may be invoked any number of times."""
        self._rounds += 1
        if self._cancelled:
            return ""

        action = self.next_action(status)
        if isinstance(action, SubmitCode):
            async with self._prompt_lock:
                if self._cancelled:
                    return ""
                code = (await self._code_provider(action.prompt)).strip()
            if self._cancelled:
                return ""
            self._state = ChallengeState.CODE_SUBMITTED
            return code
        if isinstance(action, Retry):
            logger.error("identity.wrong_code", reason=action.reason)
            return ""
        logger.info("identity.challenge_status", status=action.status)
        return ""
