from __future__ import annotations

import logging
import re

import httpx
from pydantic import BaseModel, ConfigDict, Field

from kg_pathfinder.errors import EndpointTransportError
from kg_pathfinder.http import HttpClientFactory, transient_retry
from kg_pathfinder.settings import PathfinderSettings, settings as default_settings

from .prefixes import PrefixManager, default_prefix_manager

logger = logging.getLogger(__name__)

SPARQL_RESULTS_JSON = "application/sparql-results+json"

_SELECT_RE = re.compile(r"\bSELECT\s+(?!DISTINCT\s|REDUCED\s)", re.IGNORECASE)


class SparqlTerm(BaseModel):
    """One bound RDF term from a SPARQL JSON results row."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    type: str
    value: str
    lang: str | None = Field(default=None, alias="xml:lang")
    datatype: str | None = None

    @property
    def is_iri(self) -> bool:
        return self.type == "uri"


class SparqlHead(BaseModel):
    model_config = ConfigDict(extra="ignore")

    vars: list[str] = Field(default_factory=list)


class SparqlBindings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bindings: list[dict[str, SparqlTerm]] = Field(default_factory=list)


class SparqlResults(BaseModel):
    model_config = ConfigDict(extra="ignore")

    head: SparqlHead = Field(default_factory=SparqlHead)
    results: SparqlBindings = Field(default_factory=SparqlBindings)


Row = dict[str, SparqlTerm]


def force_distinct(query: str) -> str:
    return _SELECT_RE.sub("SELECT DISTINCT ", query)


def _row_key(row: Row) -> tuple:
    return tuple(sorted((k, t.type, t.value, t.lang, t.datatype) for k, t in row.items()))


class SparqlClient:
    """SPARQL 1.1 protocol client for SELECT queries.

    The endpoint is passed per call so one client (and its connection pool)
    can serve explorations against different endpoints concurrently.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        prefixes: PrefixManager | None = None,
        cfg: PathfinderSettings | None = None,
    ):
        self.cfg = cfg or default_settings
        self.prefixes = prefixes or default_prefix_manager()
        self._owns_client = http_client is None
        self._client = http_client or HttpClientFactory.client(
            headers={"Accept": SPARQL_RESULTS_JSON}, cfg=self.cfg
        )
        self._post_with_retry = transient_retry(
            attempts=self.cfg.retry_attempts, backoff_s=self.cfg.retry_backoff_s
        )(self._post)
        self.queries_issued = 0

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> SparqlClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _post(self, endpoint: str, query: str) -> httpx.Response:
        self.queries_issued += 1
        r = await self._client.post(
            endpoint,
            data={"query": query},
            headers={"Accept": SPARQL_RESULTS_JSON},
        )
        r.raise_for_status()
        return r

    async def select(self, endpoint: str, query: str) -> list[Row]:
        """Run a SELECT query and return de-duplicated rows.

        Raises EndpointTransportError once the retry budget is spent.
        An undecodable body is logged and treated as zero rows.
        """
        q = force_distinct(self.prefixes.add_to_query(query))
        logger.debug(f"SPARQL -> {endpoint}\n{q}")
        try:
            r = await self._post_with_retry(endpoint, q)
        except httpx.HTTPStatusError as e:
            raise EndpointTransportError(
                endpoint, f"HTTP {e.response.status_code} from endpoint"
            ) from e
        except httpx.HTTPError as e:
            raise EndpointTransportError(endpoint, f"{type(e).__name__}: {e}") from e

        try:
            parsed = SparqlResults.model_validate(r.json())
        except ValueError as e:
            logger.warning(f"Undecodable SPARQL response from {endpoint}: {e}")
            return []

        seen: set[tuple] = set()
        rows: list[Row] = []
        for row in parsed.results.bindings:
            key = _row_key(row)
            if key in seen:
                continue
            seen.add(key)
            rows.append(row)
        return rows
