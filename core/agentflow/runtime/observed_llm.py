"""LLM wrapper that publishes request/response events and records the models used."""

import time

from agentflow.llm.provider import LLMCallOptions, LLMProvider, LLMResult
from agentflow.observability.logging import get_trace_context
from agentflow.runtime.event_bus import EventBus, EventType


class ObservedLLM(LLMProvider):
    """
    Delegates to an inner provider.

    Every call emits ``llm-request`` before and ``llm-response`` after,
    tagged with the node that is running according to the trace context.
    The model of each call is kept in ``models_used`` so a runner can check
    it against ``allowed_models`` once the run is over.
    """

    def __init__(self, inner: LLMProvider, bus: EventBus, run_id: str):
        self.inner = inner
        self.bus = bus
        self.run_id = run_id
        self.name = inner.name
        self.models_used: list[str] = []

    async def call(self, prompt: str, options: LLMCallOptions | None = None) -> LLMResult:
        options = options or LLMCallOptions()
        node_id = get_trace_context().get("node_id")
        await self.bus.emit(
            EventType.LLM_REQUEST,
            self.run_id,
            node_id,
            model=options.model,
            provider=options.provider,
            promptChars=len(prompt),
        )
        started = time.monotonic()
        result = await self.inner.call(prompt, options)
        model = result.model or options.model or ""
        if model and model not in self.models_used:
            self.models_used.append(model)
        await self.bus.emit(
            EventType.LLM_RESPONSE,
            self.run_id,
            node_id,
            model=model,
            provider=result.provider,
            durationMs=int((time.monotonic() - started) * 1000),
            usage=result.usage,
        )
        return result

    def disallowed_models(self, allowed: list[str] | None) -> list[str]:
        if allowed is None:
            return []
        return [m for m in self.models_used if m not in allowed]
