"""
Message nodes.

- ``message``: static text, or a pass-through of its inputs
- ``message-formatter``: LLM rewrite of upstream context into an email,
  chat reply, report or custom template
- ``prompt-template``: ``{{ var }}`` substitution without an LLM
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from agentflow.errors import LLMError
from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput, stable_seed, typed_output

logger = logging.getLogger(__name__)


class MessageNode(BaseNode):
    async def execute(self, ctx: NodeContext) -> NodeOutput:
        message = self.data.get("content") or self.data.get("message") or ""
        if self.data.get("passThrough"):
            return "\n".join(self.get_input_values(ctx)) or message
        return message


# === FORMATTER PRESETS ===


@dataclass(frozen=True)
class MessagePreset:
    name: str
    description: str
    template: str
    default_tone: str = "neutral"
    suggested_format: str = "markdown"


_AUDIENCE_SLOT = "{audience ? 'Audience: {audience}' : ''}"

MESSAGE_PRESETS: dict[str, MessagePreset] = {
    "email": MessagePreset(
        name="Email",
        description="Professional email format with subject and body",
        template=f"""Transform the provided information into a professional email format.

Context: {{context}}
Tone: {{tone}}
{_AUDIENCE_SLOT}

Requirements:
- Include a clear, descriptive subject line
- Use proper email structure with greeting and closing
- Keep content concise and actionable
- Use {{formatHint}} formatting
- Match the {{tone}} tone throughout

Format the response as a complete email message.""",
        default_tone="formal",
    ),
    "chat": MessagePreset(
        name="Chat Reply",
        description="Conversational response for chat interfaces",
        template=f"""Create a natural chat response based on the provided information.

Context: {{context}}
Tone: {{tone}}
{_AUDIENCE_SLOT}

Requirements:
- Write in a conversational, natural style
- Keep response concise and engaging
- Use {{formatHint}} formatting if needed
- Match the {{tone}} tone
- Be direct and helpful

Provide a chat-appropriate response.""",
        default_tone="friendly",
    ),
    "report": MessagePreset(
        name="Report",
        description="Structured report with sections and analysis",
        template=f"""Generate a structured report based on the provided information.

Context: {{context}}
Tone: {{tone}}
{_AUDIENCE_SLOT}

Requirements:
- Use clear headings and sections
- Present information logically
- Include summary and key findings
- Use {{formatHint}} formatting
- Maintain {{tone}} tone throughout
- Be comprehensive yet concise

Create a well-structured report.""",
    ),
    "custom": MessagePreset(
        name="Custom",
        description="Use custom template for specialized formatting",
        template="{customTemplate}",
    ),
}


def get_preset_template(preset: str, custom_template: str | None = None) -> str:
    if preset == "custom" and custom_template:
        return custom_template
    config = MESSAGE_PRESETS.get(preset)
    if config is None:
        raise ValueError(f"Unknown preset: {preset}")
    return config.template


_AUDIENCE_PATTERN = re.compile(r"\{audience\s*\?\s*'[^']*'\s*:\s*'[^']*'\}")


def build_formatter_prompt(
    preset: str,
    tone: str,
    format_hint: str,
    audience: str | None,
    custom_template: str | None,
    context: str,
) -> str:
    prompt = get_preset_template(preset, custom_template)
    if audience:
        prompt = _AUDIENCE_PATTERN.sub(f"Audience: {audience}", prompt)
        prompt = prompt.replace("{audience}", audience)
    else:
        prompt = _AUDIENCE_PATTERN.sub("", prompt)
    prompt = (
        prompt.replace("{context}", context or "{}")
        .replace("{tone}", tone)
        .replace("{formatHint}", format_hint)
    )
    return f"{prompt}\n\nFormat: {format_hint}"


_CLEANUP = (
    (re.compile(r"^```(?:markdown|html|plain)?\s*\n?", re.IGNORECASE), ""),
    (re.compile(r"\n?```\s*$"), ""),
    (re.compile(r"^Here is your message:\s*\n*", re.IGNORECASE), ""),
    (re.compile(r"^\*\*Final Answer:\*\*\s*", re.IGNORECASE), ""),
    (re.compile(r"^Final Answer:\s*", re.IGNORECASE), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
)


def clean_message_output(text: str | None) -> str:
    """Strip code fences and assistant preambles, collapse runs of blank lines."""
    if not text:
        return ""
    cleaned = text.strip()
    for pattern, replacement in _CLEANUP:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned.strip()


def merge_inputs(inputs: dict[str, Any]) -> str:
    parts = []
    for value in inputs.values():
        if isinstance(value, dict) and "type" in value and "content" in value:
            if value["type"] == "json":
                parts.append(json.dumps(value["content"], indent=2, default=str))
            else:
                parts.append(str(value["content"]))
        elif isinstance(value, str):
            parts.append(value)
        elif isinstance(value, dict | list):
            parts.append(json.dumps(value, indent=2, default=str))
        else:
            parts.append(str(value))
    return "\n\n".join(parts)


class MessageFormatterNode(BaseNode):
    """
    Rewrite upstream context into a finished message.

    Runs at temperature 0.1 with a seed derived from the context and
    settings, so identical inputs produce identical requests.
    """

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        preset = self.data.get("preset") or "chat"
        tone = self.data.get("tone") or "friendly"
        format_hint = self.data.get("formatHint") or "markdown"
        audience = self.data.get("audience")

        inputs = ctx.inputs or {
            conn.target_input: ctx.node_outputs[conn.source]
            for conn in ctx.graph.incoming(self.node.id)
            if ctx.node_outputs.get(conn.source)
        }
        context = merge_inputs(inputs)

        try:
            prompt = build_formatter_prompt(
                preset, tone, format_hint, audience, self.data.get("customTemplate"), context
            )
            result = await ctx.llm.call(
                prompt,
                self.llm_options(
                    ctx,
                    temperature=0.1,
                    max_tokens=2000,
                    seed=stable_seed(context, preset, tone, format_hint, audience or ""),
                ),
            )
        except (LLMError, ValueError) as e:
            logger.error(f"✗ Message formatter {self.node.id} failed: {e}")
            return typed_output(
                "text",
                f"Error formatting message: {e}",
                {
                    "node_type": "message",
                    "preset": preset,
                    "tone": tone,
                    "formatHint": format_hint,
                    "error": str(e),
                },
            )

        meta: dict[str, Any] = {
            "node_type": "message",
            "preset": preset,
            "tone": tone,
            "formatHint": format_hint,
        }
        if audience:
            meta["audience"] = audience
        meta["model"] = result.model
        meta["tokens"] = result.usage.get("total_tokens")
        return typed_output("text", clean_message_output(result.text), meta)


_KEY_VALUE = re.compile(r"(\w+)=([^\n]+)")


class PromptTemplateNode(BaseNode):
    """Fill ``{{ name }}`` placeholders from static variables and inputs."""

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        template = self.data.get("template") or ""
        static_vars = self.data.get("variables") or {}

        values = self.get_input_values(ctx)
        context = self.format_input_context(ctx)

        dynamic_vars = {}
        if self.data.get("extractVariablesFromInput") and context:
            dynamic_vars = {m.group(1): m.group(2).strip() for m in _KEY_VALUE.finditer(context)}

        variables = {**dynamic_vars, **static_vars, "input": context}
        result = template
        for key, value in variables.items():
            result = _substitute(result, key, str(value))
        for index, value in enumerate(values, start=1):
            result = _substitute(result, f"input{index}", value)
        return result


def _substitute(template: str, key: str, value: str) -> str:
    return re.sub(r"\{\{\s*" + re.escape(key) + r"\s*\}\}", lambda _: value, template)
