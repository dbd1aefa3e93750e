# retrieval_chat/db.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
import logging
import threading
import time

import chromadb
from chromadb.config import Settings as ChromaSettings
from sentence_transformers import SentenceTransformer

from .config import settings

logger = logging.getLogger(__name__)


class LocalEmbedder:
    """Sentence-transformers model producing normalized query vectors."""

    def __init__(self, model_name: str) -> None:
        t0 = time.perf_counter()
        self.model = SentenceTransformer(model_name)

        # most ST models are trained on <= 512 tokens
        max_len = getattr(self.model, "max_seq_length", None)
        if not isinstance(max_len, int) or max_len <= 0 or max_len > 512:
            self.model.max_seq_length = 512

        self.model.eval()
        self._loaded_sec = time.perf_counter() - t0
        logger.info("Embedding model %s loaded in %.2fs", model_name, self._loaded_sec)

    def embed_query(self, text: str) -> List[float]:
        vec = self.model.encode([text], normalize_embeddings=True)
        return vec[0].tolist()


@dataclass
class KnowledgeBase:
    """
    Wraps the Chroma connection and the embedder.
    Holds no ranking logic, only the similarity query. The collection is
    filled offline; this class never writes to it.

    Client, collection and model are opened on first use so that importing
    the app does not touch the store or download a model.
    """
    _settings: settings.__class__
    _client: Optional[Any] = field(default=None, init=False, repr=False)
    _collection: Optional[Any] = field(default=None, init=False, repr=False)
    _embedder: Optional[LocalEmbedder] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def _connect(self):
        s = self._settings
        chroma_settings = ChromaSettings(allow_reset=False, anonymized_telemetry=False)
        if s.CHROMA_HOST:
            headers = {"Authorization": f"Bearer {s.CHROMA_TOKEN}"} if s.CHROMA_TOKEN else None
            logger.info("Connecting to Chroma server %s:%s", s.CHROMA_HOST, s.CHROMA_PORT)
            return chromadb.HttpClient(
                host=s.CHROMA_HOST,
                port=s.CHROMA_PORT,
                ssl=s.CHROMA_SSL,
                headers=headers,
                settings=chroma_settings,
            )
        logger.info("Opening local Chroma store at %s", s.CHROMA_PATH)
        return chromadb.PersistentClient(path=s.CHROMA_PATH, settings=chroma_settings)

    @property
    def collection(self):
        if self._collection is None:
            # search() runs in worker threads; open the client only once
            with self._lock:
                if self._collection is None:
                    if self._client is None:
                        self._client = self._connect()
                    # raises if the collection was never indexed
                    self._collection = self._client.get_collection(name=self._settings.COLLECTION_NAME)
        return self._collection

    @property
    def embedder(self) -> LocalEmbedder:
        if self._embedder is None:
            with self._lock:
                if self._embedder is None:
                    self._embedder = LocalEmbedder(self._settings.EMBEDDING_MODEL)
        return self._embedder

    # -------- Query ----------
    def query(self, query: str, n: int = 4) -> Dict[str, Any]:
        vector = self.embedder.embed_query(query)
        return self.collection.query(
            query_embeddings=[vector],
            n_results=n,
            include=["documents", "metadatas", "distances"],
        )
