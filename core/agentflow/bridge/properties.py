"""
Properties bridge - executes a node using its Properties Panel config as the rules.

Principles:
- Configured values are authoritative. Nothing is fabricated when a node
  has no usable configuration; the result says so instead.
- Every result carries the configuration it read (inputs tab), what it
  produced (outputs tab) and an explanation (summary tab).
- Failures never escape: they become error results.
"""

import asyncio
import json
import logging
import re
from collections.abc import Callable
from typing import Any

from agentflow.bridge.intent import ToolBinding, extract_intent
from agentflow.bridge.result import ExecutionResult, PropertyField, ResultType
from agentflow.errors import LLMError
from agentflow.graph.model import Node
from agentflow.graph.safe_eval import safe_eval
from agentflow.llm.provider import LLMCallOptions, LLMProvider
from agentflow.simulation.catalog import get_mock_preset

logger = logging.getLogger(__name__)

TOOL_CALL_INSTRUCTIONS = (
    "If the user's request involves both a natural language response and a tool call, "
    'respond with a JSON object containing both "natural_language_response" and '
    '"tool_call" keys. If only a natural language response is needed, respond with '
    "plain text. If only a tool call is needed, respond with a JSON object containing "
    'only the "tool_call" key.\n\n'
    'JSON format for tool call: {"tool_call": {"tool_name": "TOOL_NAME", '
    '"operation": "OPERATION_NAME", "args": { ...ARGS... }}}'
)

LIST_SUCCESS_RESULT = {"status": "success", "data": ["item1", "item2", "item3"]}


def is_configured(value: Any) -> bool:
    """Present and non-empty. Numeric zero and False count as configured."""
    if value is None:
        return False
    if isinstance(value, str | list | dict):
        return len(value) > 0
    return True


def pick(data: dict[str, Any], *paths: str) -> Any:
    """First configured value among dotted paths into ``data``."""
    for path in paths:
        value: Any = data
        for key in path.split("."):
            value = value.get(key) if isinstance(value, dict) else None
        if is_configured(value):
            return value
    return None


def effective_kind(node: Node) -> str:
    """Bridge dispatch kind derived from type and subtype."""
    type_ = (node.kind or "").lower()
    subtype = (node.subtype or "").lower()
    if type_ == "agent":
        return "agent"
    if type_ == "tool" or subtype in ("tool", "tool-agent"):
        return "tool"
    if "knowledge-base" in (type_, subtype):
        return "knowledge-base"
    if {"router", "decision-tree"} & {type_, subtype}:
        return "router"
    if type_ == "message" or subtype == "message":
        return "message"
    return "generic"


def _fields(result: ExecutionResult, spec: list[tuple[str, str, Any]]) -> dict[str, Any]:
    result.inputs_tab.properties = [
        PropertyField(key=key, label=label, value=value if is_configured(value) else None, configured=is_configured(value))
        for key, label, value in spec
    ]
    return {key: value for key, _, value in spec}


def _user_input(input_data: dict[str, Any]) -> str:
    for key in ("input", "text", "content"):
        if input_data.get(key) is not None:
            value = input_data[key]
            return value if isinstance(value, str) else json.dumps(value, default=str)
    return ""


def _no_path(result: ExecutionResult, kind: str, explanation: str) -> ExecutionResult:
    return result.set_output(
        f"No executable configuration for {kind} node.",
        ResultType.ERROR,
        f"No valid {kind} configuration",
        f"No valid {kind} configuration",
        explanation,
    )


# === AGENT ===


async def _execute_agent(
    node: Node,
    data: dict[str, Any],
    input_data: dict[str, Any],
    llm: LLMProvider | None,
    tools: list[ToolBinding],
    options: LLMCallOptions | None,
    result: ExecutionResult,
) -> ExecutionResult:
    values = _fields(
        result,
        [
            (
                "rulesNl",
                "Agent Rules (NL)",
                pick(
                    data,
                    "rules.nl",
                    "rulesNl",
                    "agentRules.nl",
                    "prompt",
                    "content",
                    "input",
                    "config.rules.nl",
                    "properties.rules.nl",
                ),
            ),
            ("systemPrompt", "System Prompt", pick(data, "systemPrompt", "config.systemPrompt", "properties.systemPrompt")),
            ("behavior", "Behavior Rules", pick(data, "behavior", "config.behavior", "properties.behavior")),
            ("mockResponse", "Mock Response", pick(data, "mockResponse", "properties.mockResponse", "config.mockResponse")),
        ],
    )
    rules_nl, system_prompt = values["rulesNl"], values["systemPrompt"]
    behavior, mock_response = values["behavior"], values["mockResponse"]
    result.properties_used = values

    if not any(is_configured(v) for v in values.values()):
        return result.missing(
            list(values),
            "No configuration found in Properties Panel. Please configure Agent Rules, "
            "System Prompt, Behavior Rules, or Mock Response.",
        )

    if is_configured(mock_response):
        return result.use_mock_response(mock_response)

    if llm is None:
        return result.set_output(
            "No info input in properties panel",
            ResultType.ERROR,
            "Insufficient Properties Panel configuration",
            "Insufficient configuration",
            "Properties Panel has partial configuration but no execution method available",
        )

    user_prompt = _user_input(input_data)
    if rules_nl:
        prompt = (
            f"{rules_nl}\n\nUser Input: {user_prompt}\n\n"
            f"Follow the rules above exactly as specified.\n\n{TOOL_CALL_INSTRUCTIONS}"
        )
        call_options = options
        if system_prompt:
            call_options = (options or LLMCallOptions()).merged(LLMCallOptions(system=system_prompt))
    else:
        behavior_line = f"User-Defined Behavior: {behavior}" if behavior else ""
        prompt = (
            f"{system_prompt or 'You are a helpful AI assistant.'}\n\n{behavior_line}\n\n"
            f"User Input: {user_prompt}\n\n"
            "Respond according to the exact behavior and system prompt configured in the "
            f"Properties Panel.\n\n{TOOL_CALL_INSTRUCTIONS}"
        )
        call_options = options

    try:
        reply = await llm.call(prompt.strip(), call_options)
        output: Any = reply.text
        result.trace["llm"] = {"provider": reply.provider, "model": reply.model}
    except LLMError as e:
        logger.error(f"✗ Agent {node.id} LLM call failed: {e}")
        output = f"LLM execution failed: {e}"

    fired = [
        label
        for label, value in (("Agent Rules (NL)", rules_nl), ("System Prompt", system_prompt), ("Behavior Rules", behavior))
        if value
    ]
    result.set_output(
        output,
        ResultType.COMPUTED,
        "LLM execution with Properties Panel configuration",
        f"Executed with Properties Panel: {', '.join(fired)}",
        f"Executed with Properties Panel configuration: {' + '.join(fired)}",
        fired,
    )

    if tools:
        result.parsed_intent = await extract_intent(rules_nl or behavior or system_prompt or "", llm, tools, options)
        if result.parsed_intent:
            logger.info(f"🔧 Agent {node.id} intent: {result.parsed_intent['capability']}")
    return result


# === TOOL ===


async def _execute_tool(
    node: Node,
    data: dict[str, Any],
    input_data: dict[str, Any],
    llm: LLMProvider | None,
    options: LLMCallOptions | None,
    result: ExecutionResult,
) -> ExecutionResult:
    sim = data.get("simulation") or {}
    values = _fields(
        result,
        [
            ("toolBehavior", "Tool Behavior", pick(data, "rules.nl")),
            ("mockResponse", "Mock Response", pick(data, "mockResponse")),
            ("providerId", "Provider", sim.get("providerId")),
            ("operation", "Operation", sim.get("operation")),
            ("mode", "Mode", sim.get("mode")),
            ("mockPreset", "Mock Preset", sim.get("mockPreset")),
            ("latency", "Latency (ms)", sim.get("latency")),
        ],
    )
    behavior, mock_response = values["toolBehavior"], values["mockResponse"]
    provider_id, operation = values["providerId"], values["operation"]
    mode, preset_name, latency = values["mode"], values["mockPreset"], values["latency"]
    result.properties_used = values

    required = ("toolBehavior", "mockResponse", "providerId", "mode", "mockPreset")
    if not any(is_configured(values[k]) for k in required):
        return result.missing(
            list(required),
            "No configuration found in Properties Panel. Please configure Tool Behavior, "
            "Mock Response, Provider, Mode, or Mock Preset.",
        )

    latency_ms = latency if isinstance(latency, int | float) and latency > 0 else 0
    if latency_ms:
        await asyncio.sleep(latency_ms / 1000)

    tool_label = provider_id or "Tool"
    op_label = operation or "operation"

    if mode == "live":
        result.set_output(
            f"Live execution for {tool_label}:{op_label} is not yet supported.",
            ResultType.ERROR,
            "Live execution not supported",
            "Live execution not supported",
            "Live execution mode is not yet implemented.",
        )
    elif is_configured(preset_name):
        _apply_preset(result, preset_name, tool_label, op_label, provider_id, mock_response, latency_ms)
    elif is_configured(mock_response):
        result.use_mock_response(mock_response)
    elif llm is not None:
        prompt = (
            f"Tool: {provider_id or 'Generic Tool'}\n"
            f"Operation: {operation or 'execute'}\n"
            f"Behavior: {behavior or 'No specific behavior defined'}\n\n"
            f"User Input: {_user_input(input_data)}\n\n"
            "Execute according to the exact configuration in the Properties Panel."
        )
        reply = await llm.call(prompt, options)
        fired = [
            text
            for text in (
                f"Provider: {provider_id}" if provider_id else "",
                f"Operation: {operation}" if operation else "",
                "Behavior Rules" if behavior else "",
            )
            if text
        ]
        result.set_output(
            reply.text,
            ResultType.COMPUTED,
            "Tool execution with Properties Panel configuration",
            f"Executed with Properties Panel: {', '.join(fired)}",
            f"Executed tool with Properties Panel configuration: {', '.join(fired)}",
            fired,
        )
    else:
        result.set_output(
            "No executable configuration for tool node.",
            ResultType.ERROR,
            "No valid tool configuration",
            "No valid tool configuration",
            "Tool node has configuration but no valid execution path (e.g., no mock, preset, or LLM executor).",
        )

    result.trace = {
        **result.trace,
        "tool": provider_id or "N/A",
        "operation": operation or "N/A",
        "mode": mode or "N/A",
        "mock_preset": preset_name or "N/A",
        "latency_applied_ms": latency_ms,
        "simulated_response": result.result,
        "execution_path": result.execution_summary,
    }
    return result


def _apply_preset(
    result: ExecutionResult,
    preset: str,
    tool_label: str,
    op_label: str,
    provider_id: str | None,
    mock_response: Any,
    latency_ms: float,
) -> None:
    source = f"Mock Preset: {preset}"
    summary = f"Executed {tool_label} with configured operation '{op_label}' using mock preset '{preset}'."

    if preset == "timeout":
        message = f"Tool error: {tool_label} {op_label} timed out after {int(latency_ms)}ms."
        result.set_output(
            message,
            ResultType.ERROR,
            source,
            f"Simulated timeout for {tool_label}:{op_label}.",
            f"Simulated timeout for {tool_label}:{op_label}.",
            ["Mock Preset: timeout"],
        )
        return

    if preset == "success":
        value: Any = {"status": "success", "message": f"{tool_label} {op_label} completed successfully."}
    elif preset == "not_found":
        value = {"status": "error", "message": f"{tool_label} {op_label} not found."}
    elif preset == "list_success":
        value = dict(LIST_SUCCESS_RESULT)
    else:
        catalog_preset = get_mock_preset(provider_id, preset)
        if catalog_preset is not None and catalog_preset.is_error:
            result.set_output(
                f"Tool error: {catalog_preset.error}",
                ResultType.ERROR,
                source,
                summary,
                f"Catalog preset '{preset}' for {tool_label} simulates a failure.",
                [source],
            )
            return
        if catalog_preset is not None:
            value = catalog_preset.result
        else:
            value = mock_response or {
                "status": "info",
                "message": f"Unknown mock preset '{preset}'. Using generic response.",
            }

    result.set_output(
        value,
        ResultType.MOCK,
        source,
        summary,
        f"Used mock preset '{preset}' for {tool_label}:{op_label}.",
        [source],
    )


# === OTHER KINDS ===


async def _execute_knowledge_base(
    node: Node,
    data: dict[str, Any],
    input_data: dict[str, Any],
    llm: LLMProvider | None,
    options: LLMCallOptions | None,
    result: ExecutionResult,
) -> ExecutionResult:
    documents = data.get("documents") or []
    operation = data.get("operation")
    mock_response = data.get("mockResponse")
    _fields(
        result,
        [
            ("documents", "Documents", f"{len(documents)} documents" if documents else None),
            ("operation", "Operation", operation),
            ("mockResponse", "Mock Response", mock_response),
        ],
    )
    result.properties_used = {"documents": documents, "operation": operation, "mockResponse": mock_response}

    if not documents and not is_configured(mock_response):
        return result.missing(
            ["documents", "mockResponse"],
            "No documents uploaded and no mock response configured in Properties Panel.",
        )
    if is_configured(mock_response):
        return result.use_mock_response(mock_response)
    if llm is None:
        return _no_path(result, "knowledge-base", "Documents are configured but no LLM is available.")

    listing = "\n".join(
        f"- {d.get('name') or d.get('title') or 'Document'}" if isinstance(d, dict) else "- Document"
        for d in documents
    )
    prompt = (
        "Knowledge Base Query\n"
        f"Operation: {operation or 'retrieve'}\n"
        f"Available Documents: {listing}\n"
        f"Query: {_user_input(input_data)}\n\n"
        "Based on the documents uploaded in the Properties Panel, provide relevant information."
    )
    reply = await llm.call(prompt, options)
    return result.set_output(
        reply.text,
        ResultType.COMPUTED,
        "Knowledge Base execution with Properties Panel documents",
        f"Executed with {len(documents)} documents from Properties Panel",
        f"Executed knowledge base query using {len(documents)} documents from Properties Panel",
        [f"{len(documents)} documents", operation or "retrieve operation"],
    )


async def _execute_router(
    node: Node,
    data: dict[str, Any],
    input_data: dict[str, Any],
    llm: LLMProvider | None,
    options: LLMCallOptions | None,
    result: ExecutionResult,
) -> ExecutionResult:
    values = _fields(
        result,
        [
            ("mode", "Routing Mode", data.get("mode")),
            ("expression", "Expression", data.get("expression")),
            ("llmRule", "LLM Rule", data.get("llmRule")),
            ("mockResponse", "Mock Response", data.get("mockResponse")),
        ],
    )
    result.properties_used = values
    mode, expression, llm_rule = values["mode"], values["expression"], values["llmRule"]

    if not any(is_configured(v) for v in values.values()):
        return result.missing(list(values), "No routing configuration found in Properties Panel.")
    if is_configured(values["mockResponse"]):
        return result.use_mock_response(values["mockResponse"])

    if mode == "expression" and expression:
        scope = {"inputs": list(input_data.values()), "inputs_obj": input_data, "inputsObj": input_data}
        try:
            decision = bool(safe_eval(expression, scope))
            outcome: dict[str, Any] = {"decision": decision}
        except (SyntaxError, ValueError, TypeError, NameError, KeyError, IndexError) as e:
            outcome = {"decision": False, "error": str(e)}
        return result.set_output(
            outcome,
            ResultType.COMPUTED,
            "Expression evaluation from Properties Panel",
            "Evaluated expression from Properties Panel",
            f"Evaluated expression from Properties Panel: {expression}",
            ["Expression"],
        )

    if mode == "llm" and llm_rule and llm is not None:
        prompt = (
            f"{llm_rule}\n\nInput: {json.dumps(input_data, default=str)}\n\n"
            "Make a routing decision based on the rule configured in Properties Panel."
        )
        reply = await llm.call(prompt, options)
        return result.set_output(
            reply.text,
            ResultType.COMPUTED,
            "LLM routing with Properties Panel rule",
            "Applied LLM rule from Properties Panel",
            f"Applied LLM rule from Properties Panel: {llm_rule}",
            ["LLM Rule"],
        )

    return _no_path(result, "router", f"Routing mode {mode!r} has no matching expression or rule.")


async def _execute_message(
    node: Node,
    data: dict[str, Any],
    input_data: dict[str, Any],
    llm: LLMProvider | None,
    options: LLMCallOptions | None,
    result: ExecutionResult,
) -> ExecutionResult:
    values = _fields(
        result,
        [
            ("message", "Message", data.get("message")),
            ("template", "Template", data.get("template")),
            ("mockResponse", "Mock Response", data.get("mockResponse")),
        ],
    )
    result.properties_used = values
    message, template, mock_response = values["message"], values["template"], values["mockResponse"]

    if not any(is_configured(v) for v in values.values()):
        return result.missing(list(values), "No message configuration found in Properties Panel.")

    if is_configured(mock_response):
        return result.set_output(
            mock_response,
            ResultType.MOCK,
            "Mock Response from Properties Panel",
            "Used mock response from Properties Panel",
            "Used mock response configured in Properties Panel",
            ["Mock Response"],
        )
    if is_configured(message):
        return result.set_output(
            message,
            ResultType.COMPUTED,
            "Message from Properties Panel",
            "Used message from Properties Panel",
            "Used message configured in Properties Panel",
            ["Message"],
        )

    rendered = template
    for key, value in input_data.items():
        rendered = re.sub(r"\{\{" + re.escape(key) + r"\}\}", lambda _, v=value: str(v or ""), rendered)
    return result.set_output(
        rendered,
        ResultType.COMPUTED,
        "Template processing from Properties Panel",
        "Processed template from Properties Panel",
        "Processed template configured in Properties Panel",
        ["Template"],
    )


async def _execute_generic(
    node: Node,
    data: dict[str, Any],
    input_data: dict[str, Any],
    llm: LLMProvider | None,
    options: LLMCallOptions | None,
    result: ExecutionResult,
) -> ExecutionResult:
    values = _fields(
        result,
        [
            ("title", "Title", data.get("title")),
            ("description", "Description", data.get("description")),
            ("mockResponse", "Mock Response", data.get("mockResponse")),
        ],
    )
    result.properties_used = values
    title, description = values["title"], values["description"]

    if not any(is_configured(v) for v in values.values()):
        return result.missing(
            list(values), f"No configuration found in Properties Panel for {node.kind_key} node."
        )
    if is_configured(values["mockResponse"]):
        return result.use_mock_response(values["mockResponse"])
    if llm is None:
        return _no_path(result, node.kind_key, "Node has a title or description but no LLM is available.")

    lines = [f"Node: {title or node.id}", f"Type: {node.kind_key}"]
    if description:
        lines.append(f"Description: {description}")
    prompt = "\n".join(lines) + (
        f"\n\nInput: {json.dumps(input_data, default=str)}\n\n"
        "Process according to the configuration in Properties Panel."
    )
    reply = await llm.call(prompt, options)
    fired = [label for label, value in (("Title", title), ("Description", description)) if value]
    return result.set_output(
        reply.text,
        ResultType.COMPUTED,
        "Generic execution with Properties Panel configuration",
        f"Executed with Properties Panel: {', '.join(fired)}",
        f"Executed with Properties Panel configuration: {', '.join(fired)}",
        fired,
    )


_Handler = Callable[..., Any]

_HANDLERS: dict[str, _Handler] = {
    "knowledge-base": _execute_knowledge_base,
    "router": _execute_router,
    "message": _execute_message,
    "generic": _execute_generic,
}


async def execute_node_from_properties(
    node: Node,
    input_data: dict[str, Any] | None = None,
    llm: LLMProvider | None = None,
    tools: list[ToolBinding] | None = None,
    options: LLMCallOptions | None = None,
) -> ExecutionResult:
    """
    Execute a node from its Properties Panel configuration.

    Args:
        node: The node to execute; ``node.config`` holds the panel values
        input_data: Upstream values keyed by input port (``input`` by default)
        llm: Provider for nodes whose configuration needs an LLM call
        tools: Tool nodes bound to an agent; enables intent extraction
        options: Run-level LLM options (model, provider, temperature, seed)

    Returns:
        ExecutionResult. Unexpected exceptions are folded into an error
        result rather than raised.
    """
    kind = effective_kind(node)
    data = node.config
    input_data = input_data or {}
    result = ExecutionResult(node_type=kind, node_id=node.id)
    logger.debug(f"Bridge executing {node.id} as {kind}")

    try:
        if kind == "agent":
            return await _execute_agent(node, data, input_data, llm, tools or [], options, result)
        if kind == "tool":
            return await _execute_tool(node, data, input_data, llm, options, result)
        return await _HANDLERS[kind](node, data, input_data, llm, options, result)
    except Exception as e:
        logger.exception(f"✗ Bridge execution of {node.id} failed")
        result.result = None
        result.execution_summary = f"Error: {e}"
        result.outputs_tab.result = None
        result.outputs_tab.result_type = ResultType.ERROR
        result.outputs_tab.source = "Error during execution"
        result.summary_tab.explanation = f"Execution failed: {e}"
        return result
