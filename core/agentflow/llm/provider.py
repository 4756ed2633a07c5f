"""LLM Provider abstraction for pluggable LLM backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMCallOptions:
    """Per-call options. Unset fields fall back to provider defaults."""

    model: str | None = None
    provider: str | None = None
    temperature: float | None = None
    seed: int | None = None
    system: str | None = None
    response_format: dict[str, Any] | None = None
    max_tokens: int | None = None

    def merged(self, overrides: "LLMCallOptions | None") -> "LLMCallOptions":
        """Return a copy where every set field of ``overrides`` wins."""
        if overrides is None:
            return self
        values = {k: v for k, v in vars(self).items()}
        values.update({k: v for k, v in vars(overrides).items() if v is not None})
        return LLMCallOptions(**values)


@dataclass
class LLMResult:
    """Response from an LLM call."""

    text: str
    raw: Any = None
    provider: str = ""
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any LLM backend.

    Nodes only see this interface: prompt in, text plus raw payload out.
    Implementations should handle:
    - API authentication
    - Request/response formatting
    - Mapping transport and auth failures onto ``LLMError`` subclasses
    """

    name: str = "llm"

    @abstractmethod
    async def call(self, prompt: str, options: LLMCallOptions | None = None) -> LLMResult:
        """
        Send a single prompt and return the completion.

        Args:
            prompt: User prompt text
            options: Model, temperature, seed, system prompt, response format

        Returns:
            LLMResult with the completion text and the raw provider payload

        Raises:
            LLMError: on auth or transport failure. Providers never return an
                empty result in place of an error.
        """
        pass
