"""
Text Generation Client — the reply-mode language model.

Wraps the Anthropic SDK behind the single ``generate(prompt) -> str`` call the
channel bridge needs.  The client keeps no conversation state: every chat
message is answered on its own.

No retries and no timeout are applied here; a failed call is logged by the
bridge and the message goes unanswered.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import anthropic
import structlog

if TYPE_CHECKING:
    from ownly_headless.config import GenerationConfig

logger = structlog.get_logger(__name__)


class GeneratorInitError(RuntimeError):
    """Raised when the generation client cannot be initialized safely."""


class AnthropicTextGenerator:
    """``TextGenerator`` backed by the Anthropic Messages API."""

    def __init__(self, config: "GenerationConfig", client: Any = None) -> None:
        if client is None:
            if not config.api_key:
                raise GeneratorInitError(
                    "No authentication configured. Set ANTHROPIC_API_KEY for reply mode."
                )
            try:
                client = anthropic.AsyncAnthropic(api_key=config.api_key)
            except Exception as exc:
                raise GeneratorInitError(
                    f"Failed to initialize generation client: {exc}"
                ) from exc
        self._client = client
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._total_calls = 0
        logger.info("generator.initialized", model=self._model)

    @property
    def total_calls(self) -> int:
        return self._total_calls

    async def generate(self, prompt: str) -> str:
        """Return the model's text answer to *prompt*."""
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIConnectionError as e:
            logger.error("generator.connection_error", error=str(e))
            raise
        except anthropic.RateLimitError as e:
            logger.warning("generator.rate_limited", error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error(
                "generator.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise

        self._total_calls += 1
        return extract_text(response)


def extract_text(response: Any) -> str:
    """Concatenate the text blocks of a Messages API response."""
    parts: list[str] = []
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "text":
            parts.append(getattr(block, "text", ""))
    return "".join(parts).strip()
