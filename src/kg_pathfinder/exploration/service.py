from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from kg_pathfinder.errors import InvalidParameterError
from kg_pathfinder.settings import PathfinderSettings, settings as default_settings
from kg_pathfinder.sparql.client import SparqlClient
from kg_pathfinder.sparql.prefixes import PrefixManager, default_prefix_manager
from kg_pathfinder.sparql.property_path import resolve

from .engine import PathSearchEngine
from .executor import RemoteQueryExecutor, format_term
from .models import ExplorationResult, ExploreRequest
from .scoring import RelevanceScorer, build_scorer
from .tree import PathTreeFormatter

logger = logging.getLogger(__name__)


class PathExplorationService:
    """Entry point for explorations.

    Holds the long-lived pieces (HTTP client, scorer, prefixes) and builds a
    fresh executor and engine for every call, so concurrent explorations
    share nothing mutable.
    """

    def __init__(
        self,
        client: SparqlClient | None = None,
        scorer: RelevanceScorer | None = None,
        cfg: PathfinderSettings | None = None,
        prefixes: PrefixManager | None = None,
    ):
        self.cfg = cfg or default_settings
        self.prefixes = prefixes or default_prefix_manager()
        self._owns_client = client is None
        self.client = client or SparqlClient(prefixes=self.prefixes, cfg=self.cfg)
        self.scorer = scorer or build_scorer(self.cfg)
        self.formatter = PathTreeFormatter(self.prefixes)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> PathExplorationService:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _entity(self, name: str, value: str) -> str:
        expanded = self.prefixes.expand(value.strip())
        try:
            term = format_term(expanded)
        except ValueError as e:
            raise InvalidParameterError(name, str(e)) from None
        if not term.startswith("<"):
            raise InvalidParameterError(name, f"unknown prefix in {value!r}")
        return expanded

    def _request(self, **kwargs) -> ExploreRequest:
        req = ExploreRequest.build(**kwargs)
        source = self._entity("source", req.source)
        target = self._entity("target", req.target)
        predicates = None
        if req.predicates:
            predicates = tuple(self._entity("predicates", p) for p in req.predicates)
        if req.label_path:
            # fail before any remote query is issued
            resolve(req.label_path)
        return req.model_copy(update={"source": source, "target": target, "predicates": predicates})

    async def _run(self, **kwargs) -> tuple[ExplorationResult, RemoteQueryExecutor]:
        if kwargs.get("max_results") is None:
            kwargs["max_results"] = self.cfg.default_max_results
        if kwargs.get("max_depth") is None:
            kwargs["max_depth"] = self.cfg.default_max_depth
        req = self._request(**kwargs)
        logger.debug(f"Exploration request: {req!r}")
        executor = RemoteQueryExecutor(
            self.client,
            req.endpoint,
            label_path=req.label_path or self.cfg.label_path,
            label_language=self.cfg.label_language,
            excluded_predicates=self.cfg.excluded_predicates,
        )
        engine = PathSearchEngine(executor, self.scorer, self.cfg, self.prefixes)
        result = await engine.search(
            req.source,
            req.target,
            topic=req.topic,
            max_results=req.max_results,
            max_depth=req.max_depth,
            predicates=req.predicates,
            deadline_s=req.deadline_s,
        )
        return result, executor

    async def explore_result(
        self,
        source: str,
        target: str,
        endpoint: str,
        topic: str = "",
        max_results: int | None = None,
        max_depth: int | None = None,
        predicates: Sequence[str] | None = None,
        label_path: str | None = None,
        deadline_s: float | None = None,
    ) -> ExplorationResult:
        """Run one exploration and return the structured result.

        Raises InvalidParameterError or MalformedPathError before any remote
        query when the inputs are unusable. Endpoint trouble never raises;
        it shows up as fewer (or no) paths.
        """
        result, _ = await self._run(
            source=source,
            target=target,
            endpoint=endpoint,
            topic=topic or "",
            max_results=max_results,
            max_depth=max_depth,
            predicates=tuple(predicates) if predicates else None,
            label_path=label_path,
            deadline_s=deadline_s,
        )
        return result

    async def explore(
        self,
        source: str,
        target: str,
        endpoint: str,
        topic: str = "",
        max_results: int | None = None,
        max_depth: int | None = None,
        predicates: Sequence[str] | None = None,
        label_path: str | None = None,
        deadline_s: float | None = None,
    ) -> str:
        """Run one exploration and render it as a path tree."""
        result, executor = await self._run(
            source=source,
            target=target,
            endpoint=endpoint,
            topic=topic or "",
            max_results=max_results,
            max_depth=max_depth,
            predicates=tuple(predicates) if predicates else None,
            label_path=label_path,
            deadline_s=deadline_s,
        )
        labels: dict[str, str] = {}
        if result.found and not result.truncated:
            entities = sorted({result.source, result.target})
            fetched = await asyncio.gather(*(executor.fetch_label(e) for e in entities))
            labels = {e: label for e, label in zip(entities, fetched) if label}
        return self.formatter.render_result(result, labels=labels)
