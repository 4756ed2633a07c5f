"""LiteLLM-backed provider: one client for OpenAI, Anthropic, Gemini, NVIDIA and others."""

import logging
from typing import Any

import litellm

from agentflow.config import RuntimeConfig
from agentflow.errors import LLMAuthError, LLMTransportError
from agentflow.llm.provider import LLMCallOptions, LLMProvider, LLMResult

logger = logging.getLogger(__name__)


class LiteLLMProvider(LLMProvider):
    """
    Live LLM provider built on ``litellm.acompletion``.

    The model string uses litellm's ``provider/model`` form. A ``provider``
    passed in call options is prefixed onto a bare model name.
    """

    name = "litellm"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        config: RuntimeConfig | None = None,
    ):
        config = config or RuntimeConfig()
        self.model = model or config.model
        self.api_key = api_key or config.api_key
        self.api_base = api_base or config.api_base
        self.temperature = config.temperature if temperature is None else temperature
        self.max_tokens = max_tokens or config.max_tokens

    def _resolve_model(self, options: LLMCallOptions) -> str:
        model = options.model or self.model
        if options.provider and "/" not in model:
            return f"{options.provider}/{model}"
        return model

    async def call(self, prompt: str, options: LLMCallOptions | None = None) -> LLMResult:
        options = options or LLMCallOptions()
        model = self._resolve_model(options)

        messages: list[dict[str, Any]] = []
        if options.system:
            messages.append({"role": "system", "content": options.system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature if options.temperature is None else options.temperature,
            "max_tokens": options.max_tokens or self.max_tokens,
        }
        if options.seed is not None:
            kwargs["seed"] = options.seed
        if options.response_format:
            kwargs["response_format"] = options.response_format
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        logger.debug(f"→ LLM call model={model} prompt_chars={len(prompt)}", extra={"model": model})
        try:
            response = await litellm.acompletion(**kwargs)
        except litellm.AuthenticationError as e:
            raise LLMAuthError(f"Authentication failed for {model}: {e}") from e
        except Exception as e:
            raise LLMTransportError(f"LLM call to {model} failed: {e}") from e

        try:
            text = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise LLMTransportError(f"LLM response from {model} had no choices") from e

        usage = getattr(response, "usage", None)
        provider = options.provider or (model.split("/", 1)[0] if "/" in model else self.name)
        return LLMResult(
            text=text,
            raw=response.model_dump() if hasattr(response, "model_dump") else response,
            provider=provider,
            model=model,
            usage={
                "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
                "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
            },
        )
