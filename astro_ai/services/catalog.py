# =============================================
# File: astro_ai/services/catalog.py
# Purpose: CatalogSource collaborator (raw recommendation candidates)
# =============================================
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class Candidate:
    id: str
    title: str
    category: str
    kind: str  # "script" | "article"
    base_score: float
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


class CatalogSource(Protocol):
    def candidates(self, user_id: Optional[str] = None) -> List[Candidate]: ...


_SAMPLE: Sequence[Candidate] = (
    Candidate("script-1", "AI Model Training Pipeline", "ml-ops", "script", 0.85,
              "Complete MLOps pipeline for training AI models",
              {"popularity": 850, "rating": 4.8, "complexity": "advanced", "estimated_time": "2-3 hours"}),
    Candidate("script-2", "Vector Database Optimizer", "database", "script", 0.77,
              "High-performance vector search optimization",
              {"popularity": 623, "rating": 4.6, "complexity": "intermediate", "estimated_time": "1-2 hours"}),
    Candidate("script-3", "Cloud Infrastructure Automation", "devops", "script", 0.72,
              "Kubernetes and Terraform automation scripts",
              {"popularity": 445, "rating": 4.4, "complexity": "advanced", "estimated_time": "3-4 hours"}),
    Candidate("script-4", "Cloud Cost Analyzer", "cloud", "script", 0.68,
              "Finds idle resources and right-sizing opportunities across cloud accounts",
              {"popularity": 512, "rating": 4.5, "complexity": "beginner", "estimated_time": "30 minutes"}),
    Candidate("script-5", "Kubernetes Orchestration Toolkit", "devops", "script", 0.64,
              "Helm charts and operators for multi-cluster deployments",
              {"popularity": 298, "rating": 4.3, "complexity": "advanced", "estimated_time": "2 hours"}),
    Candidate("article-1", "Advanced Vector Search Techniques", "research", "article", 0.81,
              "Approximate nearest neighbour indexes and hybrid ranking",
              {"read_time": "8 min", "tags": ["vector-search", "optimization", "performance"]}),
    Candidate("article-2", "MLOps Best Practices for Production", "best-practices", "article", 0.79,
              "Monitoring, rollback and retraining strategies for deployed models",
              {"read_time": "12 min", "tags": ["mlops", "production", "deployment"]}),
    Candidate("article-3", "Responsible AI in Regulated Industries", "ethical-ai", "article", 0.66,
              "Bias audits and governance for AI in finance and healthcare",
              {"read_time": "10 min", "tags": ["ethics", "governance", "compliance"]}),
    Candidate("article-4", "Cutting Cloud Spend by 30%", "cloud", "article", 0.7,
              "A field guide to cloud cost optimization",
              {"read_time": "6 min", "tags": ["finops", "cloud", "cost"]}),
)


class StaticCatalog:
    """In-process catalog; `items` replaces the built-in sample set."""

    def __init__(self, items: Optional[Sequence[Candidate]] = None) -> None:
        self._items = tuple(_SAMPLE if items is None else items)

    def candidates(self, user_id: Optional[str] = None) -> List[Candidate]:
        return list(self._items)

    def category_of(self, item_id: str) -> Optional[str]:
        for c in self._items:
            if c.id == item_id:
                return c.category
        return None
