# =============================================
# File: astro_ai/services/retrieval.py
# Purpose: Vector index backends: in-memory numpy snapshot index + Chroma
# =============================================
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import chromadb
import numpy as np

from astro_ai.models import VectorDocument

Hit = Tuple[VectorDocument, float]

# Cosine space everywhere, same as sentence-transformers' normalized output
HNSW_SPACE = "cosine"


class VectorIndex(Protocol):
    backend: str

    def upsert(self, doc: VectorDocument) -> None: ...

    def remove(self, doc_id: str) -> bool: ...

    def query(self, vector: Sequence[float], k: int, category: Optional[str] = None) -> Tuple[List[Hit], int]: ...

    def count(self) -> int: ...

    def dimension(self) -> Optional[int]: ...


def _distance_to_similarity(dist: float, space: str = HNSW_SPACE) -> float:
    """
    Convert a Chroma distance into a similarity in [0, 1].
    For cosine, distance = 1 - cosine_sim; clamped against numeric noise.
    """
    if space == "cosine":
        sim = 1.0 - float(dist)
    else:
        sim = 1.0 / (1.0 + float(dist))
    return max(0.0, min(1.0, sim))


def _unit(vec: Sequence[float]) -> np.ndarray:
    v = np.asarray(vec, dtype=np.float32)
    n = float(np.linalg.norm(v))
    return v / n if n > 0 else v


@dataclass(frozen=True)
class _Snapshot:
    ids: Tuple[str, ...]
    docs: Tuple[VectorDocument, ...]
    matrix: np.ndarray  # (n, d), unit rows


class InMemoryIndex:
    """
    Copy-on-write index: writers build a new snapshot under a lock and swap the
    reference; a search keeps using the snapshot it started with.
    """
    backend = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snap = _Snapshot((), (), np.zeros((0, 0), dtype=np.float32))

    def upsert(self, doc: VectorDocument) -> None:
        if doc.embedding is None:
            raise ValueError("document has no embedding")
        row = _unit(doc.embedding)
        with self._lock:
            snap = self._snap
            if snap.ids and row.shape[0] != snap.matrix.shape[1]:
                raise ValueError(f"embedding dimension {row.shape[0]} != index dimension {snap.matrix.shape[1]}")
            keep = [i for i, did in enumerate(snap.ids) if did != doc.id]
            ids = tuple(snap.ids[i] for i in keep) + (doc.id,)
            docs = tuple(snap.docs[i] for i in keep) + (doc,)
            base = snap.matrix[keep] if keep else np.zeros((0, row.shape[0]), dtype=np.float32)
            matrix = np.vstack([base, row[None, :]])
            self._snap = _Snapshot(ids, docs, matrix)

    def remove(self, doc_id: str) -> bool:
        with self._lock:
            snap = self._snap
            if doc_id not in snap.ids:
                return False
            keep = [i for i, did in enumerate(snap.ids) if did != doc_id]
            dim = snap.matrix.shape[1]
            self._snap = _Snapshot(
                tuple(snap.ids[i] for i in keep),
                tuple(snap.docs[i] for i in keep),
                snap.matrix[keep] if keep else np.zeros((0, dim), dtype=np.float32),
            )
            return True

    def query(self, vector: Sequence[float], k: int, category: Optional[str] = None) -> Tuple[List[Hit], int]:
        snap = self._snap
        n = len(snap.ids)
        if n == 0:
            return [], 0
        q = _unit(vector)
        if q.shape[0] != snap.matrix.shape[1]:
            raise ValueError(f"query dimension {q.shape[0]} != index dimension {snap.matrix.shape[1]}")
        sims = np.clip(snap.matrix @ q, 0.0, 1.0)
        idx = [i for i in range(n) if category is None or snap.docs[i].metadata.get("category") == category]
        idx.sort(key=lambda i: (-float(sims[i]), snap.ids[i]))
        return [(snap.docs[i], float(sims[i])) for i in idx[:k]], n

    def get(self, doc_id: str) -> Optional[VectorDocument]:
        snap = self._snap
        for did, doc in zip(snap.ids, snap.docs):
            if did == doc_id:
                return doc
        return None

    def count(self) -> int:
        return len(self._snap.ids)

    def dimension(self) -> Optional[int]:
        snap = self._snap
        return int(snap.matrix.shape[1]) if snap.ids else None


def _chroma_metadata(meta: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Chroma accepts scalar values only; lists become comma-joined strings."""
    out: Dict[str, Any] = {}
    for k, v in (meta or {}).items():
        if v is None:
            continue
        if isinstance(v, (list, tuple, set)):
            v = ",".join(str(x) for x in v)
        elif not isinstance(v, (str, int, float, bool)):
            v = str(v)
        out[str(k)] = v
    return out or None


class ChromaIndex:
    """Chroma collection in cosine space; embeddings are supplied by VectorStore."""
    backend = "chroma"

    def __init__(self, path: str = "store/chroma", collection: str = "astro_kb", client: Any = None) -> None:
        self._client = client if client is not None else chromadb.PersistentClient(path=path)
        self._col = self._client.get_or_create_collection(
            name=collection,
            metadata={"hnsw:space": HNSW_SPACE},
        )

    def upsert(self, doc: VectorDocument) -> None:
        if doc.embedding is None:
            raise ValueError("document has no embedding")
        kwargs: Dict[str, Any] = {
            "ids": [doc.id],
            "embeddings": [list(map(float, doc.embedding))],
            "documents": [doc.text],
        }
        meta = _chroma_metadata(doc.metadata)
        if meta:
            kwargs["metadatas"] = [meta]
        self._col.upsert(**kwargs)

    def remove(self, doc_id: str) -> bool:
        found = self._col.get(ids=[doc_id])
        if not found.get("ids"):
            return False
        self._col.delete(ids=[doc_id])
        return True

    def query(self, vector: Sequence[float], k: int, category: Optional[str] = None) -> Tuple[List[Hit], int]:
        n = self._col.count()
        if n == 0:
            return [], 0
        where = {"category": {"$eq": category}} if category else None
        res = self._col.query(
            query_embeddings=[list(map(float, vector))],
            n_results=max(1, min(k, n)),
            where=where,
            include=["documents", "metadatas", "distances"],
        )
        ids = (res.get("ids") or [[]])[0]
        docs = (res.get("documents") or [[]])[0]
        metas = (res.get("metadatas") or [[]])[0]
        dists = (res.get("distances") or [[]])[0]
        hits: List[Hit] = []
        for i, did in enumerate(ids):
            meta = dict(metas[i] or {}) if i < len(metas) else {}
            doc = VectorDocument(id=did, text=docs[i] or "", metadata=meta)
            hits.append((doc, _distance_to_similarity(dists[i])))
        hits.sort(key=lambda h: (-h[1], h[0].id))
        return hits, n

    def count(self) -> int:
        return int(self._col.count())

    def dimension(self) -> Optional[int]:
        if self._col.count() == 0:
            return None
        got = self._col.get(limit=1, include=["embeddings"])
        embs = got.get("embeddings")
        if embs is None or len(embs) == 0:
            return None
        return len(embs[0])
