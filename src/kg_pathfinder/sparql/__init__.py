"""SPARQL access layer: protocol client, prefixes and property path resolution."""

from .client import SparqlClient, SparqlResults, SparqlTerm
from .prefixes import PrefixManager, default_prefix_manager
from .property_path import PropertyPathCache, ResolvedPropertyPath, resolve

__all__ = [
    "SparqlClient",
    "SparqlResults",
    "SparqlTerm",
    "PrefixManager",
    "default_prefix_manager",
    "PropertyPathCache",
    "ResolvedPropertyPath",
    "resolve",
]
