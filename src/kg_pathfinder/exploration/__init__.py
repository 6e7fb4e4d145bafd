"""Path exploration over remote knowledge graphs.

This module provides:
- A remote edge executor for SPARQL endpoints
- Relevance scoring of hops against a topic
- A bidirectional best-first path search engine
- A text tree renderer for the discovered paths
"""

from .engine import PathSearchEngine
from .executor import EdgeSource, RemoteQueryExecutor
from .models import DiscoveredPath, Direction, Edge, ExplorationResult, FrontierNode
from .scoring import EmbeddingScorer, RelevanceScorer, build_scorer
from .service import PathExplorationService
from .tree import PathTreeFormatter

__all__ = [
    "PathSearchEngine",
    "EdgeSource",
    "RemoteQueryExecutor",
    "DiscoveredPath",
    "Direction",
    "Edge",
    "ExplorationResult",
    "FrontierNode",
    "EmbeddingScorer",
    "RelevanceScorer",
    "build_scorer",
    "PathExplorationService",
    "PathTreeFormatter",
]
