"""In-memory knowledge source with keyword scoring."""

import re
from typing import Any, Dict, List, Optional

from registry.base import BaseKnowledgeSource


def _tokens(text: str) -> List[str]:
    return re.findall(r"\w+", text.lower())


class InMemoryKnowledgeSource(BaseKnowledgeSource):
    """Documents kept in a dict; a hit scores one point per query token occurrence.

    ``config["documents"]`` may seed the store with
    ``[{"id": ..., "content": ..., "metadata": {...}}]``.
    """

    def __init__(self, component_id: str, config: Optional[Dict[str, Any]] = None):
        super().__init__(component_id, config)
        self._documents: Dict[str, Dict[str, Any]] = {}

    async def on_init(self) -> None:
        for doc in self.config.get("documents") or []:
            await self.add_document(doc["id"], doc["content"], doc.get("metadata"))

    async def on_destroy(self) -> None:
        self._documents.clear()

    async def add_document(self, doc_id: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._documents[doc_id] = {
            "id": doc_id,
            "content": content,
            "metadata": dict(metadata or {}),
            "tokens": _tokens(content),
        }

    async def remove_document(self, doc_id: str) -> bool:
        return self._documents.pop(doc_id, None) is not None

    @property
    def document_count(self) -> int:
        return len(self._documents)

    async def on_search(self, query: str, top_k: int) -> List[Dict[str, Any]]:
        terms = set(_tokens(query))
        if not terms:
            return []
        hits = []
        for doc in self._documents.values():
            score = sum(1 for token in doc["tokens"] if token in terms)
            if score:
                hits.append({
                    "id": doc["id"],
                    "content": doc["content"],
                    "metadata": doc["metadata"],
                    "score": score,
                })
        hits.sort(key=lambda hit: (-hit["score"], hit["id"]))
        return hits[:top_k]
