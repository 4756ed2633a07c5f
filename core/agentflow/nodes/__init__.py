"""Node executors and the stores they share across runs."""

from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput
from agentflow.nodes.registry import NODE_EXECUTORS, create_executor, execute_node, ui_output
from agentflow.nodes.stores import DocumentStore, MemoryIndex, NodeStores, StateStore

__all__ = [
    "BaseNode",
    "NodeContext",
    "NodeOutput",
    "NODE_EXECUTORS",
    "create_executor",
    "execute_node",
    "ui_output",
    "NodeStores",
    "StateStore",
    "DocumentStore",
    "MemoryIndex",
]
