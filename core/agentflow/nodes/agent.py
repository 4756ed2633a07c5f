"""
Agent nodes.

AgentNode assembles a layered prompt from its config and upstream context
and sends it to the LLM. ToolAgentNode either runs a simulation provider
(calendar, email) or asks the LLM to play the tool and return strict JSON.
"""

import json
import logging
from typing import Any

from agentflow.errors import LLMError
from agentflow.llm.parsing import clean_assistant_text, try_extract_json
from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput
from agentflow.simulation.providers import InjectedError, get_provider, seeded_random

logger = logging.getLogger(__name__)


class AgentNode(BaseNode):
    """
    Prompt layers, joined by blank lines and skipped when unset:
    ``System:``, ``Personality:``, ``Escalation Logic:``,
    ``Confidence Threshold:``, ``Context:`` (upstream inputs) and ``User:``.
    """

    def build_prompt(self, ctx: NodeContext) -> str:
        data = self.data
        layers = []
        if data.get("systemPrompt"):
            layers.append(f"System: {data['systemPrompt']}")
        if data.get("personality"):
            layers.append(f"Personality: {data['personality']}")
        if data.get("escalationLogic"):
            layers.append(f"Escalation Logic: {data['escalationLogic']}")
        if data.get("confidenceThreshold") is not None:
            layers.append(f"Confidence Threshold: {data['confidenceThreshold']}")
        context = self.format_input_context(ctx)
        if context:
            layers.append(f"Context:\n{context}")
        if data.get("prompt"):
            layers.append(f"User: {data['prompt']}")
        return "\n\n".join(layers)

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        prompt = self.build_prompt(ctx)
        try:
            result = await ctx.llm.call(prompt, self.llm_options(ctx, temperature=self.data.get("temperature")))
        except LLMError as e:
            logger.error(f"✗ Agent {self.node.id} LLM call failed: {e}")
            return {"error": str(e)}
        return {"output": result.text, "llm": result.raw, "provider": result.provider}


# Descriptions used when the LLM plays the tool
TOOL_DESCRIPTIONS = {
    "web-search": "You are simulating a web search tool. Provide realistic search results.",
    "calculator": "You are a calculator. Perform the requested mathematical operations.",
    "code-executor": "You are simulating code execution. Provide realistic output.",
    "file-operations": "You are simulating file operations. Describe the file operation results.",
    "database-query": "You are simulating database queries. Provide realistic query results.",
    "custom-api": "You are simulating an API call. Provide realistic API response.",
    "calendar": "You are simulating a calendar tool. Report availability and events.",
}


def calendar_availability_fallback(request: str) -> dict[str, Any]:
    """Three fixed free slots, used when the model's reply cannot be parsed."""
    return {
        "type": "availability",
        "request": request,
        "slots": [
            {"start": "2025-08-11T10:00:00Z", "end": "2025-08-11T10:30:00Z"},
            {"start": "2025-08-11T14:00:00Z", "end": "2025-08-11T14:30:00Z"},
            {"start": "2025-08-12T09:00:00Z", "end": "2025-08-12T09:30:00Z"},
        ],
    }


class ToolAgentNode(BaseNode):
    """
    Tool-calling agent.

    Simulate branch: taken when simulators are globally enabled, when
    ``simulation.mode == "simulate"``, or when ``simulation.providerId`` is
    set without a mode. Failures are forced with ``simulation.injectError``
    or drawn from ``simulation.failureRate`` with a seeded random.

    Live branch: the LLM is asked for strict JSON. The reply is recovered
    by direct parse, then brace extraction, then a domain fallback, then
    returned as raw text.
    """

    def wants_simulation(self, ctx: NodeContext) -> bool:
        sim = self.data.get("simulation") or {}
        if ctx.use_simulators:
            return True
        if sim.get("mode") == "simulate":
            return True
        return bool(sim.get("providerId")) and not sim.get("mode")

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        if self.wants_simulation(ctx):
            return await self._simulate(ctx)
        return await self._live(ctx)

    async def _simulate(self, ctx: NodeContext) -> NodeOutput:
        sim = self.data.get("simulation") or {}
        tool_config = self.data.get("toolConfig") or {}
        provider_id = sim.get("providerId") or tool_config.get("toolType")
        provider = get_provider(provider_id)
        if provider is None:
            return {"error": f"Unknown simulation provider: {provider_id}"}

        operation = sim.get("operation") or provider.operations[0].name
        params = sim.get("params") or {}
        scenario_id = sim.get("scenarioId") or (ctx.run_options.scenario.name if ctx.run_options.scenario else None)

        inject = None
        forced = sim.get("injectError")
        if forced:
            inject = InjectedError(type=forced.get("type", "error"), message=forced.get("message"))
        elif sim.get("failureRate"):
            seed = f"{self.node.id}:{operation}:{ctx.run_options.overrides.seed or sim.get('seed', '')}"
            if seeded_random(seed) < float(sim["failureRate"]):
                inject = InjectedError(type="random_failure", message=f"Simulated failure in {provider.id}.{operation}")

        result = await provider.run(
            operation,
            params=params,
            scenario_id=scenario_id,
            latency_ms=sim.get("latencyMs", ctx.run_options.overrides.latency),
            inject_error=inject,
        )
        if "error" in result:
            logger.info(f"✗ Simulated {provider.id}.{operation} failed: {result['error']}")
            return {"error": result["error"], "provider": provider.id, "operation": operation}

        logger.info(f"✓ Simulated {provider.id}.{operation}")
        return {
            "output": json.dumps(result["data"], default=str),
            "data": result["data"],
            "provider": provider.id,
            "operation": operation,
        }

    async def _live(self, ctx: NodeContext) -> NodeOutput:
        tool_config = self.data.get("toolConfig")
        if not tool_config:
            return {"error": "No tool configuration provided"}

        tool_type = tool_config.get("toolType", "custom-api")
        context = self.format_input_context(ctx)
        user_input = self.data.get("prompt") or ""
        lines = [
            TOOL_DESCRIPTIONS.get(tool_type, TOOL_DESCRIPTIONS["custom-api"]),
            "",
            f"Context: {context}",
            f"User Request: {user_input}",
        ]
        if tool_config.get("parameters"):
            lines.append(f"Parameters: {json.dumps(tool_config['parameters'], default=str)}")
        lines += ["", "Respond with a single JSON object and nothing else."]

        try:
            result = await ctx.llm.call(
                "\n".join(lines),
                self.llm_options(ctx, response_format={"type": "json_object"}),
            )
        except LLMError as e:
            return {"error": str(e)}

        data = self._recover_json(result.text, tool_type, user_input or context)
        output = data if isinstance(data, str) else json.dumps(data, default=str)
        return {"output": output, "data": data, "llm": result.raw, "provider": result.provider}

    @staticmethod
    def _recover_json(text: str, tool_type: str, request: str) -> Any:
        cleaned = clean_assistant_text(text)
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            pass
        extracted = try_extract_json(cleaned)
        if extracted is not None:
            return json.loads(extracted)
        if tool_type == "calendar":
            logger.warning("⚠ Tool agent reply was not JSON; using calendar availability fallback")
            return calendar_availability_fallback(request)
        return text
