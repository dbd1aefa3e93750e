# retrieval_chat/retrieval.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
import logging

from .config import settings
from .db import KnowledgeBase

logger = logging.getLogger(__name__)


@dataclass
class Document:
    """One retrieved fragment. `score` is 1 - distance when the store reports one."""
    text: str
    meta: Dict[str, Any] = field(default_factory=dict)
    score: Optional[float] = None


def _first(raw: Dict[str, Any], key: str) -> List[Any]:
    # Chroma returns one inner list per query embedding
    rows = raw.get(key) or [[]]
    return list(rows[0] or [])


@dataclass
class RetrievalService:
    """
    Retrieval layer: query -> top-K documents from the knowledge base,
    in the order the store ranks them.
    """
    kb: KnowledgeBase
    _settings: settings.__class__

    def search(self, query: str, top_k: int | None = None) -> List[Document]:
        top_k = top_k or self._settings.TOP_K
        raw = self.kb.query(query, n=top_k)

        docs = _first(raw, "documents")
        metas = _first(raw, "metadatas")
        dists = _first(raw, "distances")

        out: List[Document] = []
        for i, text in enumerate(docs):
            if text is None:
                continue
            meta = (metas[i] if i < len(metas) else None) or {}
            dist = dists[i] if i < len(dists) else None
            score = None if dist is None else 1.0 - float(dist)
            out.append(Document(text=text, meta=dict(meta), score=score))

        logger.debug("search(%r, top_k=%d) -> %d documents", query, top_k, len(out))
        return out[:top_k]
