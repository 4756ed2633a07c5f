"""Deterministic LLM provider for mock mode and tests."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from agentflow.errors import LLMError
from agentflow.llm.provider import LLMCallOptions, LLMProvider, LLMResult

DEFAULT_MOCK_RESPONSE = "Mock LLM response"

ResponseScript = Callable[[str, LLMCallOptions], str | None]


@dataclass
class RecordedCall:
    prompt: str
    options: LLMCallOptions


class MockLLMProvider(LLMProvider):
    """
    Scripted provider that never touches the network.

    Responses are chosen in order:
    1. ``script(prompt, options)`` if given and it returns a string
    2. the first ``responses`` entry whose key is a substring of the prompt
    3. ``default``

    Every call is recorded in ``calls`` for assertions.

    Example:
        llm = MockLLMProvider(responses={"calendar": '{"capability": "calendar.list_events"}'})
    """

    name = "mock"

    def __init__(
        self,
        responses: Mapping[str, str] | None = None,
        script: ResponseScript | None = None,
        default: str = DEFAULT_MOCK_RESPONSE,
        model: str = "mock-model",
        fail_with: Exception | None = None,
    ):
        self.responses = dict(responses or {})
        self.script = script
        self.default = default
        self.model = model
        self.fail_with = fail_with
        self.calls: list[RecordedCall] = []

    async def call(self, prompt: str, options: LLMCallOptions | None = None) -> LLMResult:
        options = options or LLMCallOptions()
        self.calls.append(RecordedCall(prompt=prompt, options=options))

        if self.fail_with is not None:
            if isinstance(self.fail_with, LLMError):
                raise self.fail_with
            raise LLMError(str(self.fail_with)) from self.fail_with

        text = self.script(prompt, options) if self.script else None
        if text is None:
            text = next((v for k, v in self.responses.items() if k in prompt), self.default)

        model = options.model or self.model
        return LLMResult(
            text=text,
            raw={"choices": [{"message": {"role": "assistant", "content": text}}], "model": model},
            provider=options.provider or self.name,
            model=model,
        )

    @property
    def prompts(self) -> list[str]:
        return [c.prompt for c in self.calls]
