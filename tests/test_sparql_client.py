"""
SPARQL protocol client tests against an httpx.MockTransport endpoint.
"""

import json
import warnings
from urllib.parse import parse_qs

import httpx
import pytest

from kg_pathfinder.errors import EndpointTransportError
from kg_pathfinder.http import HttpClientFactory, is_transient, transient_retry
from kg_pathfinder.sparql.client import SparqlClient, force_distinct

ENDPOINT = "https://sparql.example.org/sparql"

ROW = {"s": {"type": "uri", "value": "http://example.org/A"}, "l": {"type": "literal", "value": "Ay", "xml:lang": "en"}}


def _ok(bindings):
    body = {"head": {"vars": ["s", "l"]}, "results": {"bindings": bindings}}
    return httpx.Response(200, content=json.dumps(body).encode())


class Recorder:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request):
        self.requests.append(request)
        r = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(r, Exception):
            raise r
        return httpx.Response(r.status_code, content=r.content, headers=r.headers)

    def query(self, i=0):
        return parse_qs(self.requests[i].content.decode())["query"][0]


def _client(handler, cfg):
    http = HttpClientFactory.client(cfg=cfg, transport=httpx.MockTransport(handler))
    return SparqlClient(http, cfg=cfg)


class TestSelect:
    async def test_rows_are_parsed(self, cfg):
        rec = Recorder(_ok([ROW]))
        client = _client(rec, cfg)

        rows = await client.select(ENDPOINT, "SELECT ?s ?l WHERE { ?s rdfs:label ?l }")

        assert len(rows) == 1
        assert rows[0]["s"].is_iri
        assert rows[0]["l"].value == "Ay"
        assert rows[0]["l"].lang == "en"
        assert not rows[0]["l"].is_iri

    async def test_request_shape(self, cfg):
        rec = Recorder(_ok([]))
        client = _client(rec, cfg)

        await client.select(ENDPOINT, "SELECT ?s WHERE { ?s rdfs:label ?l }")

        req = rec.requests[0]
        assert req.method == "POST"
        assert req.headers["Accept"] == "application/sparql-results+json"
        q = rec.query()
        assert "SELECT DISTINCT ?s" in q
        assert "PREFIX rdfs: <http://www.w3.org/2000/01/rdf-schema#>" in q

    async def test_duplicate_rows_are_dropped(self, cfg):
        client = _client(Recorder(_ok([ROW, ROW])), cfg)

        rows = await client.select(ENDPOINT, "SELECT ?s ?l WHERE { ?s ?p ?l }")

        assert len(rows) == 1

    async def test_malformed_body_is_no_rows(self, cfg):
        client = _client(Recorder(httpx.Response(200, content=b"<html>oops</html>")), cfg)

        assert await client.select(ENDPOINT, "SELECT ?s WHERE { ?s ?p ?o }") == []

    async def test_unexpected_json_shape_is_no_rows(self, cfg):
        body = {"results": {"bindings": [{"s": {"value": "missing type"}}]}}
        client = _client(Recorder(httpx.Response(200, content=json.dumps(body).encode())), cfg)

        assert await client.select(ENDPOINT, "SELECT ?s WHERE { ?s ?p ?o }") == []


class TestRetry:
    async def test_transient_status_is_retried_once(self, cfg):
        rec = Recorder(httpx.Response(503), _ok([ROW]))
        client = _client(rec, cfg)

        rows = await client.select(ENDPOINT, "SELECT ?s WHERE { ?s ?p ?o }")

        assert len(rows) == 1
        assert len(rec.requests) == 2

    async def test_retry_budget_is_one(self, cfg):
        rec = Recorder(httpx.Response(502))
        client = _client(rec, cfg)

        with pytest.raises(EndpointTransportError) as exc:
            await client.select(ENDPOINT, "SELECT ?s WHERE { ?s ?p ?o }")

        assert len(rec.requests) == 2
        assert exc.value.endpoint == ENDPOINT
        assert "502" in str(exc.value)

    async def test_client_errors_are_not_retried(self, cfg):
        rec = Recorder(httpx.Response(400))
        client = _client(rec, cfg)

        with pytest.raises(EndpointTransportError):
            await client.select(ENDPOINT, "SELECT ?s WHERE { ?s ?p ?o }")

        assert len(rec.requests) == 1

    async def test_network_errors_become_transport_errors(self, cfg):
        rec = Recorder(httpx.ConnectError("connection refused"))
        client = _client(rec, cfg)

        with pytest.raises(EndpointTransportError):
            await client.select(ENDPOINT, "SELECT ?s WHERE { ?s ?p ?o }")

        assert len(rec.requests) == 2
        assert client.queries_issued == 2


class TestHelpers:
    def test_force_distinct(self):
        assert force_distinct("SELECT ?s WHERE {}") == "SELECT DISTINCT ?s WHERE {}"
        assert force_distinct("SELECT DISTINCT ?s WHERE {}") == "SELECT DISTINCT ?s WHERE {}"
        assert force_distinct("select REDUCED ?s WHERE {}") == "select REDUCED ?s WHERE {}"

    def test_is_transient(self):
        req = httpx.Request("POST", ENDPOINT)
        assert is_transient(httpx.ReadTimeout("slow", request=req))
        assert is_transient(httpx.HTTPStatusError("x", request=req, response=httpx.Response(429, request=req)))
        assert not is_transient(httpx.HTTPStatusError("x", request=req, response=httpx.Response(404, request=req)))
        assert not is_transient(ValueError("nope"))

    def test_retry_policy_builds_without_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            policy = transient_retry(attempts=2, backoff_s=0.5)

        assert callable(policy)

    async def test_zero_backoff_retries_immediately(self):
        calls = []

        @transient_retry(attempts=2, backoff_s=0)
        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("refused")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 2
