"""Thinking node: a structured, step-by-step LLM analysis of upstream context."""

import json
import logging
from typing import Any

from agentflow.errors import LLMError
from agentflow.llm.parsing import parse_json_response
from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput, typed_output

logger = logging.getLogger(__name__)

DEFAULT_THINKING_SYSTEM_PROMPT = (
    "You are a careful, stepwise thinker. Break down problems methodically "
    "and provide clear reasoning for your conclusions."
)

# style -> (temperature, max_tokens)
THINKING_STYLE_PRESETS: dict[str, tuple[float, int]] = {
    "fast": (0.3, 1000),
    "balanced": (0.7, 2000),
    "deep": (0.9, 4000),
}

TOOL_INTENTS_INSTRUCTION = (
    'If you need to call tools, include them in your response as a "toolIntents" '
    'array with objects containing "name" and "args" properties.'
)


class ThinkingNode(BaseNode):
    """
    Ask the LLM for a JSON ``{answer, structured}`` analysis.

    Replies that are not JSON become ``{answer: text, structured: None}``.
    When ``schemaHint`` is a JSON object, the reply is checked for its
    top-level keys and the outcome is reported under ``meta.validation``.
    """

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        style = self.data.get("style")
        temperature, max_tokens = THINKING_STYLE_PRESETS.get(style, THINKING_STYLE_PRESETS["balanced"])
        schema_hint = self.data.get("schemaHint")
        allow_tools = bool(self.data.get("allowToolCalls"))

        context = {
            port: value["content"] if isinstance(value, dict) and value.get("type") in ("text", "json") else value
            for port, value in self._inputs(ctx).items()
        }
        prompt = "\n\n".join(
            [
                f"Context: {json.dumps(context, indent=2, default=str)}",
                "Please analyze this context and provide a thoughtful response. "
                "Think through the problem step by step.",
                f"Expected output format: {schema_hint}" if schema_hint else "",
                TOOL_INTENTS_INSTRUCTION if allow_tools else "",
            ]
        )

        try:
            result = await ctx.llm.call(
                prompt,
                self.llm_options(
                    ctx,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    system=self.data.get("systemPrompt") or DEFAULT_THINKING_SYSTEM_PROMPT,
                    response_format={"type": "json_object"},
                ),
            )
        except LLMError as e:
            logger.error(f"✗ Thinking node {self.node.id} failed: {e}")
            return typed_output(
                "error",
                {"error": str(e), "node_type": "thinking"},
                {"node_type": "thinking", "validation": {"schema_valid": False, "error": str(e)}},
            )

        parsed = parse_json_response(result.text)
        if not isinstance(parsed, dict):
            parsed = {"answer": result.text, "structured": None}

        meta: dict[str, Any] = {"node_type": "thinking", "model": result.model}
        if result.usage.get("total_tokens") is not None:
            meta["tokens"] = result.usage["total_tokens"]
        if allow_tools and "toolIntents" in parsed:
            intents = parsed["toolIntents"]
            meta["tool_intents"] = intents if isinstance(intents, list) else []
        if schema_hint:
            meta["validation"] = check_schema_hint(parsed, schema_hint)

        content = {
            "answer": parsed.get("answer") or result.text,
            "structured": parsed.get("structured") or parsed,
        }
        return typed_output("json", content, meta)

    def validate(self) -> list[str]:
        errors = []
        if self.data.get("style") not in THINKING_STYLE_PRESETS:
            errors.append(f"Thinking node {self.node.id} has unknown style {self.data.get('style')!r}")
        schema_hint = self.data.get("schemaHint")
        if schema_hint:
            try:
                json.loads(schema_hint)
            except json.JSONDecodeError:
                errors.append(f"Thinking node {self.node.id} has a schemaHint that is not valid JSON")
        return errors

    def _inputs(self, ctx: NodeContext) -> dict[str, Any]:
        return {
            conn.target_input: ctx.node_outputs[conn.source]
            for conn in ctx.graph.incoming(self.node.id)
            if ctx.node_outputs.get(conn.source)
        }


def check_schema_hint(parsed: dict[str, Any], schema_hint: str) -> dict[str, Any]:
    """Report whether every top-level key of the hint is present in the reply."""
    try:
        expected = json.loads(schema_hint)
    except json.JSONDecodeError as e:
        return {"schema_valid": False, "error": f"Schema validation error: {e}"}
    if isinstance(expected, dict):
        return {"schema_valid": all(key in parsed for key in expected)}
    return {"schema_valid": True}
