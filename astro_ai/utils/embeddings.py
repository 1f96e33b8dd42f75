# =============================================
# File: astro_ai/utils/embeddings.py
# Purpose: EmbeddingClient collaborator backed by sentence-transformers
# =============================================
from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional, Protocol

from sentence_transformers import SentenceTransformer


class EmbeddingClient(Protocol):
    def embed(self, text: str) -> List[float]: ...


@lru_cache(maxsize=4)
def get_embedding_model(model_name: Optional[str] = None) -> SentenceTransformer:
    name = model_name or os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
    return SentenceTransformer(name, device="cpu")


class SentenceTransformerEmbeddings:
    """Normalized embeddings, so cosine similarity is a dot product."""

    def __init__(self, model_name: Optional[str] = None) -> None:
        self.model_name = model_name

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        model = get_embedding_model(self.model_name)
        # numpy array -> python lists
        return model.encode(texts, normalize_embeddings=True).tolist()

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]
