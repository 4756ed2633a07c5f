"""Knowledge nodes backed by the injected document store and memory index."""

import json
import logging
from typing import Any

from agentflow.nodes.base import BaseNode, NodeContext, NodeOutput, typed_output

logger = logging.getLogger(__name__)

_QUERY_FIELDS = ("query", "question", "text", "message", "content", "description", "summary")


class KnowledgeBaseNode(BaseNode):
    """
    Per-node document cache.

    ``store`` replaces the node's documents with ``config.documents``;
    ``retrieve`` and ``search`` return everything stored as JSON.
    """

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        operation = self.data.get("operation") or "retrieve"

        if operation == "store":
            documents = self.data.get("documents") or []
            ctx.stores.documents.put(self.node.id, documents, self.data.get("metadata") or {})
            logger.info(f"✓ {self.node.id} stored {len(documents)} documents")
            return f"Stored {len(documents)} documents"

        if operation in ("retrieve", "search"):
            stored = ctx.stores.documents.get(self.node.id)
            if stored is None:
                return "No documents found in knowledge base"
            return json.dumps(stored.to_dict(), default=str)

        return {"error": "Unknown operation"}


class MemoryNode(BaseNode):
    """Retrieve context from a named memory index using a query built from inputs."""

    async def execute(self, ctx: NodeContext) -> NodeOutput:
        project_id = ctx.run_options.variables.get("projectId") or "default"
        index_name = self.data.get("indexName") or f"project_{project_id}"
        k = self.data.get("retrievalTopK") or 5
        meta = {"node_type": "memory", "index_name": index_name, "k": k}

        inputs = ctx.inputs or {
            conn.target_input: ctx.node_outputs[conn.source]
            for conn in ctx.graph.incoming(self.node.id)
            if ctx.node_outputs.get(conn.source)
        }
        query = build_query(inputs)
        if not query:
            return typed_output("json", {"query": "", "context": []}, meta)

        hits = ctx.stores.memory.search(index_name, query, k)
        logger.debug(f"Memory {self.node.id}: {len(hits)} hits in {index_name}")
        return typed_output("json", {"query": query, "context": hits}, meta)


def build_query(inputs: dict[str, Any]) -> str:
    """
    Turn upstream outputs into a search query.

    Text envelopes contribute their content. JSON envelopes contribute
    well-known text fields, or up to three short string fields when none
    are present. Plain strings are used as-is and small objects as JSON.
    """
    parts: list[str] = []
    for value in inputs.values():
        if isinstance(value, dict) and "type" in value and "content" in value:
            content = value["content"]
            if value["type"] == "text":
                parts.append(str(content))
            elif value["type"] == "json":
                if isinstance(content, dict):
                    found = [content[f] for f in _QUERY_FIELDS if isinstance(content.get(f), str) and content[f]]
                    if not found:
                        found = [
                            f"{k}: {v}"
                            for k, v in content.items()
                            if isinstance(v, str) and 0 < len(v) < 500
                        ][:3]
                    parts.extend(found)
                else:
                    parts.append(json.dumps(content, default=str))
        elif isinstance(value, str):
            parts.append(value)
        elif value is not None:
            dumped = json.dumps(value, default=str)
            if len(dumped) < 500:
                parts.append(dumped)
    return " ".join(parts).strip()
