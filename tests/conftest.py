"""
Shared fixtures: an in-memory graph standing in for a SPARQL endpoint,
topic scorers, and an httpx handler that answers the queries the executor
builds.
"""

import asyncio
import json
import re
from urllib.parse import parse_qs

import httpx
import pytest

from kg_pathfinder.errors import EndpointTransportError, ScorerUnavailableError
from kg_pathfinder.exploration.models import Direction, Edge
from kg_pathfinder.settings import PathfinderSettings

EX = "http://example.org/"
REL = EX + "relatedTo"


def ex(name: str) -> str:
    return EX + name


class FakeGraph:
    """EdgeSource over a fixed list of triples."""

    def __init__(self, triples, *, fail=(), delay=0.0, labels=None):
        self.triples = [tuple(t) for t in triples]
        self.fail = set(fail)
        self.delay = delay
        self.labels = labels or {}
        self.calls: list[tuple[str, Direction]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_edges(self, anchor, direction, limit, predicate_allowlist=None):
        self.calls.append((anchor, direction))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if anchor in self.fail:
                raise EndpointTransportError("fake://graph", f"HTTP 503 for {anchor}")
            edges = []
            for s, p, o in self.triples:
                if predicate_allowlist and p not in predicate_allowlist:
                    continue
                if direction is Direction.FORWARD and s == anchor:
                    edges.append(Edge(s, p, o, direction))
                elif direction is Direction.BACKWARD and o == anchor:
                    edges.append(Edge(s, p, o, direction))
            return sorted(edges, key=Edge.key)[:limit]
        finally:
            self.in_flight -= 1

    async def fetch_label(self, entity):
        return self.labels.get(entity)


class KeywordScorer:
    """1.0 when the topic appears in the hop text, ``miss`` otherwise."""

    def __init__(self, miss: float = 0.3):
        self.miss = miss
        self.calls = 0

    def score(self, text, topic):
        self.calls += 1
        return 1.0 if topic.lower() in text.lower() else self.miss


class FailingScorer:
    def score(self, text, topic):
        raise ScorerUnavailableError("model offline")


@pytest.fixture
def cfg():
    return PathfinderSettings(
        retry_backoff_s=0,
        min_relevance=0.15,
        neutral_score=0.5,
        depth_penalty=0.05,
        beam_width=12,
        expansion_batch=4,
        max_concurrency=8,
        label_language="en",
        custom_prefixes=None,
    )


@pytest.fixture
def chain():
    """A -> B -> C -> D"""
    return FakeGraph([(ex("A"), REL, ex("B")), (ex("B"), REL, ex("C")), (ex("C"), REL, ex("D"))])


@pytest.fixture
def diamond():
    """A -> Music_Hall -> D and A -> Stadium -> D"""
    return FakeGraph(
        [
            (ex("A"), REL, ex("Music_Hall")),
            (ex("Music_Hall"), REL, ex("D")),
            (ex("A"), REL, ex("Stadium")),
            (ex("Stadium"), REL, ex("D")),
        ]
    )


# --------------------------
# SPARQL endpoint double
# --------------------------

_FORWARD_RE = re.compile(r"<([^>]+)> \?predicate \?neighbor \.")
_BACKWARD_RE = re.compile(r"\?neighbor \?predicate <([^>]+)> \.")
_LABEL_RE = re.compile(r"<([^>]+)> rdfs:label \?label \.")


def _iri(v):
    return {"type": "uri", "value": v}


def _lit(v):
    return {"type": "literal", "value": v, "xml:lang": "en"}


class SparqlGraphHandler:
    """httpx.MockTransport handler answering edge and label queries from triples."""

    def __init__(self, triples, labels=None):
        self.triples = list(triples)
        self.labels = labels or {}
        self.queries: list[str] = []

    def _bindings(self, query):
        if m := _FORWARD_RE.search(query):
            anchor = m.group(1)
            return [
                {"predicate": _iri(p), "neighbor": _iri(o), **({"nlabel": _lit(self.labels[o])} if o in self.labels else {})}
                for s, p, o in self.triples
                if s == anchor
            ]
        if m := _BACKWARD_RE.search(query):
            anchor = m.group(1)
            return [
                {"predicate": _iri(p), "neighbor": _iri(s), **({"nlabel": _lit(self.labels[s])} if s in self.labels else {})}
                for s, p, o in self.triples
                if o == anchor
            ]
        if m := _LABEL_RE.search(query):
            label = self.labels.get(m.group(1))
            return [{"label": _lit(label)}] if label else []
        return []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        query = parse_qs(request.content.decode())["query"][0]
        self.queries.append(query)
        body = {"head": {"vars": []}, "results": {"bindings": self._bindings(query)}}
        return httpx.Response(
            200,
            content=json.dumps(body).encode(),
            headers={"Content-Type": "application/sparql-results+json"},
        )
