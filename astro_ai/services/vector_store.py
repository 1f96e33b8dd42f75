# =============================================
# File: astro_ai/services/vector_store.py
# Purpose: VectorStore: sanitized similarity search over an embedding index
# =============================================
from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from astro_ai.config import SearchConfig
from astro_ai.models import SearchOptions, SearchResponse, SearchResult, VectorDocument
from astro_ai.services.retrieval import ChromaIndex, InMemoryIndex, VectorIndex
from astro_ai.utils import metrics, slog
from astro_ai.utils.embeddings import EmbeddingClient, SentenceTransformerEmbeddings
from astro_ai.utils.errors import (
    ProviderError,
    ProviderTimeoutError,
    ServiceTimeoutError,
    ServiceUnavailableError,
    ValidationError,
)
from astro_ai.utils.retry import CancelToken, WorkerPool, call_with_deadline
from astro_ai.utils.sanitize import ContentSanitizer, collapse_ws

EMPTY_QUERY = "Invalid or empty search query"
QUERY_TOO_LONG = "Search query too long"
BAD_OPTIONS = "Invalid search options"
UNAVAILABLE = "Search is temporarily unavailable"


def build_index(config: SearchConfig) -> VectorIndex:
    if config.backend == "chroma":
        return ChromaIndex(path=config.chroma_path, collection=config.chroma_collection)
    return InMemoryIndex()


class VectorStore:
    """
    search: scrub -> reject empty / oversized -> embed (deadline) -> rank -> threshold -> truncate.
    Rejections are terminal and never retried.
    """

    def __init__(
        self,
        embedder: Optional[EmbeddingClient] = None,
        index: Optional[VectorIndex] = None,
        config: Optional[SearchConfig] = None,
    ) -> None:
        self.config = config or SearchConfig.from_env()
        self.embedder = embedder or SentenceTransformerEmbeddings(self.config.embedding_model)
        self.index = index if index is not None else build_index(self.config)
        self._query_sanitizer = ContentSanitizer()
        # Read-time pass: redactions are deleted, no markers inside result text
        self._reader = ContentSanitizer(marker="", pii_marker="")
        self._embed_pool = WorkerPool("embed", self.config.embed_workers)

    def _embed(self, text: str, cancel: Optional[CancelToken] = None):
        return call_with_deadline(
            lambda: self.embedder.embed(text), self.config.embed_timeout_s, cancel, pool=self._embed_pool
        )

    def _reject(self, started: float, error: str, raw: str, query_filtered: bool = True) -> SearchResponse:
        elapsed = round((time.perf_counter() - started) * 1000, 3)
        slog.log_event("search.query", qhash=slog.qhash(raw), results=0, error=error,
                       query_filtered=query_filtered, latency_ms=elapsed)
        return SearchResponse(results=[], search_time_ms=elapsed, vectors_searched=0,
                              error=error, query_filtered=query_filtered)

    def search(
        self,
        query: Any,
        options: Optional[SearchOptions | Dict[str, Any]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> SearchResponse:
        started = time.perf_counter()
        metrics.incr("searches_total")
        raw = query if isinstance(query, str) else ""

        cleaned = self._query_sanitizer.scrub(raw)
        filtered = cleaned != collapse_ws(raw)
        if not cleaned:
            return self._reject(started, EMPTY_QUERY, raw)
        # Length is a hard limit on the raw input as well as the cleaned query.
        if len(raw) > self.config.max_query_chars or len(cleaned) > self.config.max_query_chars:
            return self._reject(started, QUERY_TOO_LONG, raw)

        if isinstance(options, dict):
            try:
                options = SearchOptions.model_validate(options)
            except PydanticValidationError:
                return self._reject(started, BAD_OPTIONS, raw, query_filtered=filtered)
        opts = options or SearchOptions()
        k = opts.max_results or self.config.max_results
        threshold = opts.similarity

        try:
            vector = self._embed(cleaned, cancel)
        except ProviderError as e:
            logger.warning(f"[search] embedding failed: {type(e).__name__}: {e}")
            return self._reject(started, UNAVAILABLE, raw, query_filtered=filtered)
        except Exception as e:
            logger.exception(f"[search] embedding client error: {type(e).__name__}")
            return self._reject(started, UNAVAILABLE, raw, query_filtered=filtered)

        try:
            hits, searched = self.index.query(vector, k, category=opts.category)
        except ValueError as e:
            logger.error(f"[search] index rejected query vector: {e}")
            return self._reject(started, UNAVAILABLE, raw, query_filtered=filtered)
        results = []
        for doc, sim in hits:
            if threshold is not None and sim < threshold:
                continue
            results.append(
                SearchResult(
                    document_id=doc.id,
                    text=self._reader.sanitize(doc.text).cleaned,
                    similarity=round(sim, 6),
                    metadata=dict(doc.metadata),
                )
            )
        results = results[:k]

        elapsed = round((time.perf_counter() - started) * 1000, 3)
        slog.log_event("search.query", qhash=slog.qhash(cleaned), results=len(results),
                       vectors_searched=searched, query_filtered=filtered, latency_ms=elapsed)
        return SearchResponse(results=results, search_time_ms=elapsed, vectors_searched=searched,
                              query_filtered=filtered)

    def _prepare(self, doc: VectorDocument | Dict[str, Any], dim: Optional[int]) -> VectorDocument:
        """Validate `doc` and compute its embedding when missing. Nothing is stored."""
        if not isinstance(doc, VectorDocument):
            try:
                doc = VectorDocument.model_validate(doc)
            except PydanticValidationError as e:
                raise ValidationError("A document needs a non-empty id and text.", detail=str(e)) from e
        if not doc.text.strip():
            raise ValidationError("A document needs a non-empty id and text.")
        if doc.embedding is None:
            try:
                vector = self._embed(doc.text)
            except ProviderTimeoutError as e:
                raise ServiceTimeoutError("Indexing took too long. Please try again.", detail=str(e)) from e
            except ProviderError as e:
                raise ServiceUnavailableError("Indexing is temporarily unavailable.", detail=str(e)) from e
            except Exception as e:
                logger.exception(f"[search] embedding client error while indexing id={doc.id}")
                raise ServiceUnavailableError("Indexing is temporarily unavailable.", detail=str(e)) from e
            doc = doc.model_copy(update={"embedding": list(vector)})
        elif not doc.embedding:
            raise ValidationError("Document embedding must not be empty.")

        if dim is not None and len(doc.embedding) != dim:
            raise ValidationError(f"Document embedding must have {dim} dimensions.")
        return doc

    def add_document(self, doc: VectorDocument | Dict[str, Any]) -> VectorDocument:
        """Store `doc` (embedding computed when missing). An existing id is replaced."""
        return self.add_documents([doc])[0]

    def add_documents(self, docs: Iterable[VectorDocument | Dict[str, Any]]) -> List[VectorDocument]:
        """
        All or nothing: every document is validated and embedded before the
        first upsert, so a bad entry anywhere in the batch leaves the index as it was.
        """
        dim = self.index.dimension()
        prepared: List[VectorDocument] = []
        for d in docs:
            doc = self._prepare(d, dim)
            if dim is None:
                dim = len(doc.embedding)
            prepared.append(doc)
        for doc in prepared:
            self.index.upsert(doc)
            logger.info(f"[search] indexed id={doc.id} dim={len(doc.embedding)} backend={self.index.backend}")
        return prepared

    def remove_document(self, doc_id: str) -> bool:
        return self.index.remove(doc_id)

    def get_stats(self) -> Dict[str, Any]:
        count = self.index.count()
        dim = self.index.dimension()
        return {
            "document_count": count,
            "dimension": dim,
            # float32 vectors
            "index_size_bytes": count * (dim or 0) * 4,
            "backend": self.index.backend,
        }
