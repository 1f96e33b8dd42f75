# =============================================
# File: tests/test_chroma_index.py
# Purpose: Chroma backend behind the VectorIndex interface (ephemeral client)
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import uuid

import pytest

chromadb = pytest.importorskip("chromadb")

from astro_ai.models import VectorDocument
from astro_ai.services.retrieval import ChromaIndex, _chroma_metadata, _distance_to_similarity


@pytest.fixture()
def index():
    return ChromaIndex(collection=f"test_{uuid.uuid4().hex[:12]}", client=chromadb.EphemeralClient())


def _seed(idx):
    idx.upsert(VectorDocument(id="a", text="alpha", embedding=[1.0, 0.0, 0.0], metadata={"category": "x"}))
    idx.upsert(VectorDocument(id="b", text="beta", embedding=[0.8, 0.6, 0.0], metadata={"category": "y", "tags": ["p", "q"]}))
    idx.upsert(VectorDocument(id="c", text="gamma", embedding=[0.0, 0.0, 1.0]))


def test_empty_collection(index):
    assert index.query([1.0, 0.0, 0.0], k=3) == ([], 0)
    assert index.count() == 0
    assert index.dimension() is None


def test_query_ranks_by_cosine(index):
    _seed(index)
    hits, n = index.query([1.0, 0.0, 0.0], k=2)
    assert n == 3
    assert [d.id for d, _ in hits] == ["a", "b"]
    assert hits[0][1] == pytest.approx(1.0, abs=1e-4)
    assert hits[1][1] == pytest.approx(0.8, abs=1e-4)
    assert hits[0][0].text == "alpha"


def test_category_filter_and_metadata(index):
    _seed(index)
    hits, _ = index.query([1.0, 0.0, 0.0], k=3, category="y")
    assert [d.id for d, _ in hits] == ["b"]
    assert hits[0][0].metadata["tags"] == "p,q"


def test_upsert_remove_count_dimension(index):
    _seed(index)
    assert index.count() == 3
    assert index.dimension() == 3
    index.upsert(VectorDocument(id="a", text="alpha v2", embedding=[0.0, 1.0, 0.0]))
    assert index.count() == 3
    assert index.remove("a") is True
    assert index.remove("a") is False
    assert index.count() == 2


def test_metadata_helpers():
    assert _chroma_metadata({}) is None
    assert _chroma_metadata({"a": None, "b": [1, 2], "c": {"k": 1}, "d": 3}) == {"b": "1,2", "c": "{'k': 1}", "d": 3}
    assert _distance_to_similarity(0.25) == pytest.approx(0.75)
    assert _distance_to_similarity(1.7) == 0.0
    assert _distance_to_similarity(1.0, space="l2") == pytest.approx(0.5)
