from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from kg_pathfinder.errors import EndpointTransportError
from kg_pathfinder.settings import settings
from kg_pathfinder.sparql.client import SparqlClient
from kg_pathfinder.sparql.property_path import PropertyPathCache, ResolvedPropertyPath

from .models import Direction, Edge

logger = logging.getLogger(__name__)


def format_term(value: str) -> str:
    """SPARQL form of an IRI or prefixed name given by a caller."""
    value = value.strip()
    if value.startswith("<") and value.endswith(">") and len(value) > 2:
        return value
    if value.startswith(("http://", "https://", "urn:")):
        if any(c in value for c in ' <>"{}|^`\\'):
            raise ValueError(f"invalid IRI: {value!r}")
        return f"<{value}>"
    prefix, sep, local = value.partition(":")
    if sep and prefix and local and " " not in value:
        return value
    raise ValueError(f"not an IRI or prefixed name: {value!r}")


class EdgeSource(Protocol):
    """What the search engine needs from the remote graph."""

    async def fetch_edges(
        self,
        anchor: str,
        direction: Direction,
        limit: int,
        predicate_allowlist: Sequence[str] | None = None,
    ) -> list[Edge]: ...

    async def fetch_label(self, entity: str) -> str | None: ...


class RemoteQueryExecutor:
    """Edge retrieval against one SPARQL endpoint.

    One instance serves one exploration: it owns the property path cache for
    that exploration while sharing the SparqlClient (and its connection pool)
    with everything else.
    """

    def __init__(
        self,
        client: SparqlClient,
        endpoint: str,
        *,
        label_path: str | None = None,
        label_language: str | None = None,
        excluded_predicates: Sequence[str] | None = None,
    ):
        self.client = client
        self.endpoint = endpoint
        self.label_path = label_path or settings.label_path
        self.label_language = settings.label_language if label_language is None else label_language
        excluded = settings.excluded_predicates if excluded_predicates is None else excluded_predicates
        self.excluded = [format_term(p) for p in excluded]
        self.paths = PropertyPathCache()

    def _label_filter(self, var: str) -> str:
        if not self.label_language:
            return ""
        return f'FILTER(LANG({var}) = "" || LANGMATCHES(LANG({var}), "{self.label_language}"))'

    def _label_block(self, resolved: ResolvedPropertyPath) -> str:
        return f"OPTIONAL {{ {resolved.group()} {self._label_filter(resolved.final_variable)} }}"

    def build_edge_query(
        self,
        anchor: str,
        direction: Direction,
        limit: int,
        predicate_allowlist: Sequence[str] | None = None,
    ) -> str:
        a = format_term(anchor)
        if direction is Direction.FORWARD:
            triple = f"{a} ?predicate ?neighbor ."
        else:
            triple = f"?neighbor ?predicate {a} ."

        neighbor_label = self.paths.resolve(self.label_path, subject="?neighbor", variable="neighborLabel")
        predicate_label = self.paths.resolve(self.label_path, subject="?predicate", variable="predicateLabel")

        where = [triple, f"FILTER(isIRI(?neighbor) && ?neighbor != {a})"]
        if predicate_allowlist:
            values = " ".join(sorted({format_term(p) for p in predicate_allowlist}))
            where.append(f"VALUES ?predicate {{ {values} }}")
        if self.excluded:
            where.append(f"FILTER(?predicate NOT IN ({', '.join(self.excluded)}))")
        where.append(self._label_block(neighbor_label))
        where.append(self._label_block(predicate_label))

        body = "\n  ".join(where)
        return (
            "SELECT ?predicate ?neighbor"
            f" (SAMPLE({neighbor_label.final_variable}) AS ?nlabel)"
            f" (SAMPLE({predicate_label.final_variable}) AS ?plabel)\n"
            f"WHERE {{\n  {body}\n}}\n"
            "GROUP BY ?predicate ?neighbor\n"
            f"LIMIT {int(limit)}"
        )

    async def fetch_edges(
        self,
        anchor: str,
        direction: Direction,
        limit: int,
        predicate_allowlist: Sequence[str] | None = None,
    ) -> list[Edge]:
        """Edges touching ``anchor`` in one direction, at most ``limit`` of them.

        Transport failures propagate as EndpointTransportError; an empty or
        malformed result is simply no edges.
        Neighbours whose IRI cannot be written back into a query are dropped.
        """
        query = self.build_edge_query(anchor, direction, limit, predicate_allowlist)
        rows = await self.client.select(self.endpoint, query)

        edges: dict[tuple[str, str, str, str], Edge] = {}
        for row in rows[: max(0, int(limit))]:
            pred = row.get("predicate")
            nb = row.get("neighbor")
            if pred is None or nb is None or not nb.is_iri or nb.value == anchor:
                continue
            try:
                format_term(nb.value)
            except ValueError:
                logger.debug(f"Skipping neighbour of {anchor} with unusable IRI {nb.value!r}")
                continue
            nlabel = row["nlabel"].value if "nlabel" in row else None
            plabel = row["plabel"].value if "plabel" in row else None
            if direction is Direction.FORWARD:
                edge = Edge(anchor, pred.value, nb.value, direction, object_label=nlabel, predicate_label=plabel)
            else:
                edge = Edge(nb.value, pred.value, anchor, direction, subject_label=nlabel, predicate_label=plabel)
            edges.setdefault(edge.key(), edge)
        return [edges[k] for k in sorted(edges)]

    async def fetch_label(self, entity: str) -> str | None:
        resolved = self.paths.resolve(self.label_path, subject=format_term(entity), variable="label")
        query = (
            f"SELECT {resolved.final_variable} WHERE {{ {resolved.group()} "
            f"{self._label_filter(resolved.final_variable)} }}\nLIMIT 1"
        )
        try:
            rows = await self.client.select(self.endpoint, query)
        except EndpointTransportError as e:
            logger.warning(f"Label lookup for {entity} failed: {e}")
            return None
        for row in rows:
            term = row.get(resolved.final_variable.lstrip("?"))
            if term is not None and term.value.strip():
                return term.value.strip()
        return None
