"""
kg-pathfinder - relevance-guided path exploration over SPARQL knowledge graphs
"""

from .errors import (
    EndpointTransportError,
    InvalidParameterError,
    MalformedPathError,
    PathfinderError,
    ScorerUnavailableError,
)
from .exploration import PathExplorationService, PathSearchEngine, PathTreeFormatter

__version__ = "0.1.0"

__all__ = [
    "PathExplorationService",
    "PathSearchEngine",
    "PathTreeFormatter",
    "PathfinderError",
    "MalformedPathError",
    "InvalidParameterError",
    "EndpointTransportError",
    "ScorerUnavailableError",
]
