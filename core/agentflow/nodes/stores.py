"""
Explicit stores for node state that outlives a single run.

State machine positions, knowledge base documents and memory indexes are
keyed by node id (or index name). They live on a ``NodeStores`` bundle that
the caller creates and passes into runs. Sharing one bundle across runs
keeps state; a fresh bundle, or ``clear()``, starts clean.
"""

import re
from dataclasses import dataclass, field
from typing import Any


class StateStore:
    """Current state per state-machine node."""

    def __init__(self) -> None:
        self._states: dict[str, str] = {}

    def get(self, node_id: str) -> str | None:
        return self._states.get(node_id)

    def set(self, node_id: str, state: str) -> None:
        self._states[node_id] = state

    def clear(self, node_id: str | None = None) -> None:
        if node_id is None:
            self._states.clear()
        else:
            self._states.pop(node_id, None)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._states


@dataclass
class StoredDocuments:
    documents: list[Any] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"documents": self.documents, "metadata": self.metadata}


class DocumentStore:
    """Documents held per knowledge-base node."""

    def __init__(self) -> None:
        self._docs: dict[str, StoredDocuments] = {}

    def put(self, node_id: str, documents: list[Any], metadata: dict[str, Any] | None = None) -> None:
        self._docs[node_id] = StoredDocuments(list(documents), dict(metadata or {}))

    def get(self, node_id: str) -> StoredDocuments | None:
        return self._docs.get(node_id)

    def clear(self, node_id: str | None = None) -> None:
        if node_id is None:
            self._docs.clear()
        else:
            self._docs.pop(node_id, None)


@dataclass
class MemoryEntry:
    id: str
    text: str
    summary: str = ""
    source: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


_WORD = re.compile(r"\w+")


def _tokens(text: str) -> set[str]:
    return {t.lower() for t in _WORD.findall(text)}


class MemoryIndex:
    """
    Keyword-overlap retrieval over named indexes.

    Scores are the fraction of query terms found in an entry. Ties keep
    insertion order, so retrieval is deterministic.
    """

    def __init__(self) -> None:
        self._indexes: dict[str, list[MemoryEntry]] = {}

    def add(self, index_name: str, entry: MemoryEntry) -> None:
        self._indexes.setdefault(index_name, []).append(entry)

    def add_text(self, index_name: str, text: str, source: str = "", **metadata: Any) -> MemoryEntry:
        entries = self._indexes.setdefault(index_name, [])
        entry = MemoryEntry(
            id=f"{index_name}_{len(entries)}",
            text=text,
            summary=text[:200],
            source=source,
            metadata=metadata,
        )
        entries.append(entry)
        return entry

    def search(self, index_name: str, query: str, k: int = 5) -> list[dict[str, Any]]:
        terms = _tokens(query)
        if not terms:
            return []
        scored = []
        for entry in self._indexes.get(index_name, []):
            overlap = len(terms & _tokens(entry.text))
            if overlap:
                scored.append((overlap / len(terms), entry))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            {
                "id": entry.id,
                "score": round(score, 4),
                "summary": entry.summary,
                "text": entry.text,
                "source": entry.source,
                "metadata": entry.metadata,
            }
            for score, entry in scored[:k]
        ]

    def count(self, index_name: str) -> int:
        return len(self._indexes.get(index_name, []))

    def clear(self, index_name: str | None = None) -> None:
        if index_name is None:
            self._indexes.clear()
        else:
            self._indexes.pop(index_name, None)


@dataclass
class NodeStores:
    """Bundle of cross-run stores handed to executors."""

    states: StateStore = field(default_factory=StateStore)
    documents: DocumentStore = field(default_factory=DocumentStore)
    memory: MemoryIndex = field(default_factory=MemoryIndex)

    def clear(self, key: str | None = None) -> None:
        """Clear all stores, or only entries for one node id / index name."""
        self.states.clear(key)
        self.documents.clear(key)
        self.memory.clear(key)
