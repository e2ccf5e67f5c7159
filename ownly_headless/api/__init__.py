"""External API clients used by the channel bridge."""

from ownly_headless.api.generate import AnthropicTextGenerator, GeneratorInitError

__all__ = ["AnthropicTextGenerator", "GeneratorInitError"]
