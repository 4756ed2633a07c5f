"""
Agent -> Tool delegation.

An agent delegates when its output is a ``tool_call`` JSON object or when
intent extraction found a capability. The connected tool node whose
provider matches the requested tool runs through the bridge with its own
configured operation; whatever operation the agent asked for is ignored.
"""

import logging
from typing import Any

from agentflow.bridge.intent import ToolBinding
from agentflow.bridge.properties import execute_node_from_properties
from agentflow.bridge.result import ExecutionResult
from agentflow.graph.model import FlowGraph, Node, NodeKind
from agentflow.llm.parsing import parse_json_response
from agentflow.llm.provider import LLMCallOptions, LLMProvider

logger = logging.getLogger(__name__)

TOOL_RULE_TEMPLATE = (
    "You now have access to the {provider} tool with the {operation} operation. "
    "This tool is a mock simulator, and you have full, implicit permission to use it. "
    "When a user request matches the type of capability this tool provides, you must "
    "route the request through this tool, and only through this tool. Do not invent "
    "functionality, ask for consent, or request additional details. Directly execute "
    "the tool call and return its results."
)


def is_tool_node(node: Node | None) -> bool:
    return node is not None and (node.kind == NodeKind.TOOL or node.subtype == NodeKind.TOOL)


def is_agent_node(node: Node | None) -> bool:
    return node is not None and (node.kind == NodeKind.AGENT or node.subtype == NodeKind.AGENT)


def connected_tools(agent_id: str, graph: FlowGraph) -> list[ToolBinding]:
    """Tool nodes directly downstream of an agent, in connection order."""
    bindings = []
    for conn in graph.outgoing(agent_id):
        target = graph.node(conn.target)
        if not is_tool_node(target):
            continue
        sim = target.config.get("simulation") or {}
        if sim.get("providerId"):
            bindings.append(
                ToolBinding(
                    node_id=target.id,
                    provider_id=sim["providerId"],
                    operation=sim.get("operation"),
                    mode=sim.get("mode"),
                )
            )
    return bindings


def inject_tool_rules(agent: Node, tools: list[ToolBinding]) -> Node:
    """
    Return a copy of ``agent`` whose system prompt grants access to each tool.

    Rules already present in the prompt are not repeated.
    """
    system_prompt = agent.config.get("systemPrompt") or ""
    additions = ""
    for tool in tools:
        if not tool.operation:
            continue
        rule = TOOL_RULE_TEMPLATE.format(provider=tool.provider_id, operation=tool.operation)
        if rule not in system_prompt and rule not in additions:
            additions += f"\n\n{rule}"
    if not additions:
        return agent
    config = {**agent.config, "systemPrompt": system_prompt + additions}
    return agent.model_copy(update={"config": config})


def requested_tool_call(output: Any, parsed_intent: dict[str, Any] | None) -> dict[str, Any] | None:
    """``{tool_name, operation, args}`` from a tool_call reply, else from the parsed intent."""
    payload = output if isinstance(output, dict) else parse_json_response(output) if isinstance(output, str) else None
    if isinstance(payload, dict) and isinstance(payload.get("tool_call"), dict):
        call = payload["tool_call"]
        if call.get("tool_name"):
            return {
                "tool_name": call["tool_name"],
                "operation": call.get("operation"),
                "args": call.get("args") or {},
            }
    if parsed_intent:
        return {"tool_name": parsed_intent["tool_name"], "operation": parsed_intent["operation"], "args": {}}
    return None


async def delegate_to_tool(
    agent_result: ExecutionResult,
    tools: list[ToolBinding],
    graph: FlowGraph,
    llm: LLMProvider | None = None,
    options: LLMCallOptions | None = None,
) -> Any:
    """
    Run the tool an agent asked for and fold the outcome into ``agent_result``.

    Returns:
        The value the agent should forward downstream: the tool result when
        delegation happened, otherwise the agent's own result.
    """
    call = requested_tool_call(agent_result.result, agent_result.parsed_intent)
    if call is None:
        return agent_result.result

    tool_name = call["tool_name"]
    binding = next((t for t in tools if t.provider_id == tool_name), None)
    if binding is None:
        requested = f"{tool_name}:{call['operation']}"
        logger.warning(f"⚠ Agent {agent_result.node_id} attempted to call unknown tool: {requested}")
        agent_result.execution_summary = f"Agent attempted to call unknown tool: {requested}"
        agent_result.outputs_tab.result = f"Error: Tool {requested} not found or not configured."
        agent_result.outputs_tab.source = "Tool delegation failed"
        agent_result.summary_tab.explanation = f"Agent attempted to call unknown tool: {requested}."
        agent_result.trace["delegation_error"] = f"Tool {requested} not found."
        return agent_result.result

    tool_node = graph.node(binding.node_id)
    operation = binding.operation
    if call["operation"] and call["operation"] != operation:
        logger.info(
            f"🔧 Agent asked for {tool_name}.{call['operation']}; using configured operation {operation}"
        )

    tool_result = await execute_node_from_properties(tool_node, call["args"], llm, options=options)
    delegated = tool_result.result if tool_result.result is not None else tool_result.outputs_tab.result

    agent_result.trace["agent_output"] = agent_result.result
    agent_result.result = delegated
    agent_result.execution_summary = f"Agent delegated request to Tool: {tool_name} → operation: {operation}"
    agent_result.outputs_tab.result = delegated
    agent_result.outputs_tab.source = f"Delegated to Tool: {tool_name}:{operation}"
    agent_result.summary_tab.explanation = f"Agent delegated to tool {tool_name}:{operation}."
    agent_result.trace["delegated_to_tool"] = {
        "tool_name": tool_name,
        "operation": operation,
        "args": call["args"],
        "tool_node_id": binding.node_id,
        "tool_result": delegated,
    }
    logger.info(f"✓ Agent {agent_result.node_id} delegated to {tool_name}:{operation}")
    return delegated

