"""
Node executor registry.

Maps every dispatchable NodeKind to its executor class. UI nodes have no
executor; their output is read straight from their config.
"""

import logging
from typing import Any

from agentflow.errors import NoExecutorError
from agentflow.graph.model import Node, NodeKind
from agentflow.nodes.agent import AgentNode, ToolAgentNode
from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput
from agentflow.nodes.knowledge import KnowledgeBaseNode, MemoryNode
from agentflow.nodes.logic import DecisionTreeNode, IfElseNode, RouterNode, StateMachineNode
from agentflow.nodes.message import MessageFormatterNode, MessageNode, PromptTemplateNode
from agentflow.nodes.thinking import ThinkingNode
from agentflow.nodes.tool import ToolNode

logger = logging.getLogger(__name__)

NODE_EXECUTORS: dict[NodeKind, type[BaseNode]] = {
    NodeKind.AGENT: AgentNode,
    NodeKind.TOOL_AGENT: ToolAgentNode,
    NodeKind.THINKING: ThinkingNode,
    NodeKind.IF_ELSE: IfElseNode,
    NodeKind.DECISION_TREE: DecisionTreeNode,
    NodeKind.ROUTER: RouterNode,
    NodeKind.STATE_MACHINE: StateMachineNode,
    NodeKind.KNOWLEDGE_BASE: KnowledgeBaseNode,
    NodeKind.MEMORY: MemoryNode,
    NodeKind.MESSAGE: MessageNode,
    NodeKind.MESSAGE_FORMATTER: MessageFormatterNode,
    NodeKind.PROMPT_TEMPLATE: PromptTemplateNode,
    NodeKind.TOOL: ToolNode,
}

_missing = set(NodeKind) - set(NODE_EXECUTORS) - {NodeKind.UI}
if _missing:
    raise RuntimeError(f"Node kinds without an executor: {sorted(_missing)}")


def create_executor(node: Node) -> BaseNode | None:
    """
    Instantiate the executor for ``node``.

    Returns:
        The executor, or None for UI nodes

    Raises:
        NoExecutorError: if the node's kind is not recognized
    """
    kind = node.resolved_kind
    if kind == NodeKind.UI:
        return None
    executor_cls = NODE_EXECUTORS.get(kind) if kind is not None else None
    if executor_cls is None:
        raise NoExecutorError(node.kind_key)
    return executor_cls(node)


def ui_output(node: Node) -> Any:
    """Output of a UI node: ``content``, ``message``, ``inputValue`` or the last message."""
    config = node.config
    for key in ("content", "message", "inputValue"):
        if config.get(key):
            return config[key]
    messages = config.get("messages")
    if isinstance(messages, list) and messages:
        last = messages[-1]
        return last.get("content", last) if isinstance(last, dict) else last
    return ""


async def execute_node(node: Node, ctx: NodeContext) -> NodeOutput:
    """
    Dispatch one node. Never raises for node-level failures.

    Unknown kinds and executor exceptions are returned as ``{"error": ...}``.
    """
    try:
        executor = create_executor(node)
    except NoExecutorError as e:
        logger.error(f"✗ {e}")
        return {"error": str(e)}

    if executor is None:
        return ui_output(node)

    try:
        return await executor.execute(ctx)
    except Exception as e:
        logger.exception(f"✗ Node {node.id} ({node.kind_key}) raised")
        return {"error": str(e)}
