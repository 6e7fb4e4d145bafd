"""Bidirectional, relevance-guided path search over a remote graph.

Two frontiers, one rooted at the source and one at the target, take turns
expanding their most promising nodes. Every expansion costs two remote
queries (forward and backward edges), so the search never fetches more
than it expands: candidate edges are scored against the topic, edges below
``min_relevance`` are dropped, and only the ``beam_width`` best survivors of
each node enter the frontier.

Scoring policy
--------------
Per-hop relevance ``r`` lies in [0, 1]. A discovered path of ``n`` hops
scores ``mean(r) - depth_penalty * (n - 1)``; the zero-length path scores 1.
A frontier node carries the optimistic bound of that score over every
completion still allowed by ``max_depth`` (remaining hops assumed to score 1),
which is non-increasing along a path and drives the best-first cutoff.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from kg_pathfinder.errors import EndpointTransportError
from kg_pathfinder.settings import PathfinderSettings, settings as default_settings
from kg_pathfinder.sparql.prefixes import PrefixManager, default_prefix_manager
from kg_pathfinder.util_text import readable_name

from .executor import EdgeSource
from .models import (
    DiscoveredPath,
    Direction,
    Edge,
    ExplorationResult,
    ExplorationStats,
    FrontierNode,
)
from .scoring import RelevanceScorer

logger = logging.getLogger(__name__)

_EPS = 1e-12


def path_score(hop_scores: Sequence[float], depth_penalty: float) -> float:
    if not hop_scores:
        return 1.0
    n = len(hop_scores)
    return sum(hop_scores) / n - depth_penalty * (n - 1)


def score_bound(hop_scores: Sequence[float], max_depth: int, depth_penalty: float) -> float:
    """Best final score reachable from a partial path of ``len(hop_scores)`` hops."""
    k = len(hop_scores)
    s = sum(hop_scores)
    best = -math.inf
    for n in range(max(k, 1), max(max_depth, k) + 1):
        best = max(best, (s + (n - k)) / n - depth_penalty * (n - 1))
    return best


class SideState(str, Enum):
    EXPANDING = "expanding"
    EXHAUSTED = "exhausted"


@dataclass
class Frontier:
    """One side of the search: its priority queue and the entities it reached.

    ``reached`` keeps, per entity, up to ``max_paths_per_entity`` distinct
    ways of getting there; these are what the meeting check joins.
    """

    name: str
    origin: str
    depth_limit: int
    max_paths_per_entity: int
    state: SideState = SideState.EXPANDING
    reached: dict[str, list[FrontierNode]] = field(default_factory=dict)
    best_depth: dict[str, int] = field(default_factory=dict)
    _heap: list[tuple] = field(default_factory=list)
    _seq: itertools.count = field(default_factory=itertools.count)

    def __post_init__(self) -> None:
        root = FrontierNode(entity=self.origin, depth=0)
        if self.record(root):
            self.push(root)

    def record(self, node: FrontierNode) -> bool:
        """Remember ``node`` as a way to reach its entity.

        Returns True when the node should be enqueued for expansion: the entity
        was not reached before at an equal or shallower depth and the node is
        still inside the depth limit.
        """
        paths = self.reached.setdefault(node.entity, [])
        if len(paths) < self.max_paths_per_entity:
            paths.append(node)
        prev = self.best_depth.get(node.entity)
        if prev is not None and prev <= node.depth:
            return False
        self.best_depth[node.entity] = node.depth
        return node.depth < self.depth_limit

    def push(self, node: FrontierNode) -> None:
        heapq.heappush(self._heap, (-node.cumulative_score, node.depth, node.entity, next(self._seq), node))

    def _stale(self, node: FrontierNode) -> bool:
        return node.depth > self.best_depth.get(node.entity, node.depth)

    def pop_batch(self, size: int, floor: float | None = None) -> list[FrontierNode]:
        """Pop up to ``size`` best nodes sharing one depth.

        Nodes whose bound cannot beat ``floor`` are never returned; since the
        queue is ordered by bound, reaching one ends the side.
        """
        batch: list[FrontierNode] = []
        taken: set[str] = set()
        while self._heap and len(batch) < size:
            node = self._heap[0][-1]
            if self._stale(node) or node.entity in taken:
                heapq.heappop(self._heap)
                continue
            if floor is not None and node.cumulative_score < floor - _EPS:
                self._heap.clear()
                break
            if batch and node.depth != batch[0].depth:
                break
            heapq.heappop(self._heap)
            batch.append(node)
            taken.add(node.entity)
        return batch

    def __len__(self) -> int:
        return len(self._heap)


@dataclass
class _Search:
    """Mutable state of one exploration call. Never shared between calls."""

    source: Frontier
    target: Frontier
    topic: str
    max_results: int
    max_depth: int
    predicates: tuple[str, ...] | None
    stats: ExplorationStats
    found: dict[tuple, DiscoveredPath] = field(default_factory=dict)
    deadline: float | None = None
    truncated: bool = False
    scorer_warned: bool = False


def hop_text(edge: Edge) -> str:
    """What a hop is scored by: readable predicate, then readable destination."""
    return (
        f"{readable_name(edge.predicate, edge.predicate_label)} "
        f"{readable_name(edge.destination, edge.destination_label)}"
    )


def _as_score(value) -> float | None:
    try:
        r = float(value)
    except (TypeError, ValueError):
        return None
    return r if math.isfinite(r) else None


class PathSearchEngine:
    def __init__(
        self,
        edges: EdgeSource,
        scorer: RelevanceScorer,
        cfg: PathfinderSettings | None = None,
        prefixes: PrefixManager | None = None,
    ):
        self.edges = edges
        self.scorer = scorer
        self.cfg = cfg or default_settings
        self.prefixes = prefixes or default_prefix_manager()
        self._sem = asyncio.Semaphore(self.cfg.max_concurrency)

    # --- Scoring ---

    def _score_texts(self, texts: list[str], topic: str) -> tuple[dict[str, float | None], str | None]:
        """Score hop texts against ``topic``. Runs in a worker thread.

        One batch call when the scorer has ``score_many``; whatever the batch
        could not score is retried one text at a time. A text that still fails
        maps to None. Returns the scores and the first error seen.
        """
        scores: dict[str, float | None] = {}
        error: str | None = None
        score_many = getattr(self.scorer, "score_many", None)
        if score_many is not None:
            try:
                for text, value in zip(texts, score_many(texts, topic)):
                    scores[text] = _as_score(value)
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                scores.clear()
        for text in texts:
            if text in scores:
                continue
            try:
                scores[text] = _as_score(self.scorer.score(text, topic))
            except Exception as e:
                error = error or f"{type(e).__name__}: {e}"
                scores[text] = None
        return scores, error

    async def _score(self, texts: list[str], search: _Search) -> dict[str, float | None]:
        if not texts or not search.topic.strip():
            return {}
        scores, error = await asyncio.to_thread(self._score_texts, texts, search.topic)
        if error and not search.scorer_warned:
            search.scorer_warned = True
            logger.warning(f"Relevance scorer failed, using neutral score for affected edges: {error}")
        return scores

    def _hop_score(self, edge: Edge, scores: dict[str, float | None], search: _Search) -> tuple[float, bool]:
        """Relevance of one hop. Second item is False when the neutral score was used."""
        if not search.topic.strip():
            return self.cfg.neutral_score, False
        r = scores.get(hop_text(edge))
        if r is None:
            search.stats.scorer_fallbacks += 1
            return self.cfg.neutral_score, False
        return min(1.0, max(0.0, r)), True

    def _floor(self, search: _Search) -> float | None:
        """Score of the worst kept path once the result budget is full."""
        if len(search.found) < search.max_results:
            return None
        ranked = sorted(search.found.values(), key=DiscoveredPath.sort_key)
        return ranked[search.max_results - 1].score

    # --- Expansion ---

    async def _fetch(self, anchor: str, direction: Direction, search: _Search) -> list[Edge]:
        async with self._sem:
            search.stats.queries += 1
            return await self.edges.fetch_edges(
                anchor, direction, self.cfg.edges_per_query, search.predicates
            )

    async def _expand_node(self, node: FrontierNode, search: _Search) -> list[Edge] | None:
        """Forward and backward edges of one anchor; None when the anchor is exhausted by failure.

        A transport failure, or an anchor no query can be built for, only
        exhausts that direction of that anchor.
        """
        results = await asyncio.gather(
            self._fetch(node.entity, Direction.FORWARD, search),
            self._fetch(node.entity, Direction.BACKWARD, search),
            return_exceptions=True,
        )
        edges: list[Edge] = []
        failures: list[Exception] = []
        for r in results:
            if isinstance(r, (EndpointTransportError, ValueError)):
                failures.append(r)
            elif isinstance(r, BaseException):
                raise r
            else:
                edges.extend(r)
        if failures and len(failures) == len(results):
            logger.warning(f"Anchor {node.entity} exhausted after failure: {failures[0]}")
            return None
        for f in failures:
            logger.warning(f"Partial expansion of {node.entity}: {f}")
        return edges

    def _candidates(self, node: FrontierNode, edges: list[Edge], search: _Search) -> list[Edge]:
        on_path = set(node.entities)
        search.stats.edges_seen += len(edges)
        return [e for e in edges if e.origin == node.entity and e.destination not in on_path]

    def _merge(
        self,
        side: Frontier,
        node: FrontierNode,
        edges: list[Edge],
        scores: dict[str, float | None],
        search: _Search,
    ) -> list[FrontierNode]:
        """Prune and enqueue the children of ``node``. Runs on the event loop only."""
        candidates: list[tuple[float, Edge]] = []
        for edge in edges:
            r, scored = self._hop_score(edge, scores, search)
            if scored and r < self.cfg.min_relevance:
                search.stats.edges_pruned += 1
                continue
            candidates.append((r, edge))

        candidates.sort(key=lambda c: (-c[0], c[1].key()))
        search.stats.edges_pruned += max(0, len(candidates) - self.cfg.beam_width)

        children: list[FrontierNode] = []
        for r, edge in candidates[: self.cfg.beam_width]:
            hop_scores = (*node.hop_scores, r)
            child = FrontierNode(
                entity=edge.destination,
                depth=node.depth + 1,
                path=(*node.path, edge),
                hop_scores=hop_scores,
                cumulative_score=score_bound(hop_scores, search.max_depth, self.cfg.depth_penalty),
            )
            if side.record(child):
                side.push(child)
            children.append(child)
        return children

    async def _expand_round(self, side: Frontier, batch: list[FrontierNode], search: _Search) -> list[FrontierNode]:
        tasks = [asyncio.create_task(self._expand_node(node, search)) for node in batch]
        timeout = None
        if search.deadline is not None:
            timeout = max(0.0, search.deadline - asyncio.get_running_loop().time())
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            search.truncated = True
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        # batch order, so the outcome does not depend on completion order
        expanded: list[tuple[FrontierNode, list[Edge]]] = []
        for node, task in zip(batch, tasks):
            if task not in done:
                continue
            edges = task.result()
            if edges is None:
                search.stats.anchors_failed += 1
                continue
            search.stats.anchors_expanded += 1
            expanded.append((node, self._candidates(node, edges, search)))

        texts = sorted({hop_text(e) for _, edges in expanded for e in edges})
        scores = await self._score(texts, search)

        touched: list[FrontierNode] = []
        for node, edges in expanded:
            touched.extend(self._merge(side, node, edges, scores, search))
        return touched

    # --- Meeting ---

    def _join(self, src: FrontierNode, tgt: FrontierNode, search: _Search) -> DiscoveredPath | None:
        hops = src.depth + tgt.depth
        if hops > search.max_depth:
            return None
        if set(src.entities) & set(tgt.entities) != {src.entity}:
            return None
        edges = (*src.path, *(e.reversed() for e in reversed(tgt.path)))
        score = path_score((*src.hop_scores, *tgt.hop_scores), self.cfg.depth_penalty)
        return DiscoveredPath(source=search.source.origin, edges=edges, score=score)

    def _meet(self, side: Frontier, touched: list[FrontierNode], search: _Search) -> int:
        """Join paths at entities reached by both frontiers. Returns the number of new paths."""
        other = search.target if side is search.source else search.source
        meeting = {n.entity for n in touched} & other.reached.keys()
        added = 0
        for entity in sorted(meeting):
            for src in search.source.reached[entity]:
                for tgt in search.target.reached[entity]:
                    path = self._join(src, tgt, search)
                    if path is None or path.key() in search.found:
                        continue
                    search.found[path.key()] = path
                    added += 1
        return added

    # --- Driver ---

    async def search(
        self,
        source: str,
        target: str,
        *,
        topic: str,
        max_results: int,
        max_depth: int,
        predicates: Sequence[str] | None = None,
        deadline_s: float | None = None,
    ) -> ExplorationResult:
        source, target = self.prefixes.expand(source), self.prefixes.expand(target)
        if predicates:
            predicates = [self.prefixes.expand(p) for p in predicates]
        result = ExplorationResult(source=source, target=target, topic=topic)
        if source == target:
            result.paths = [DiscoveredPath(source=source, edges=(), score=1.0)]
            result.total_found = 1
            return result

        side_limit = math.ceil(max_depth / 2)
        cap = self.cfg.max_paths_per_entity
        loop = asyncio.get_running_loop()
        search = _Search(
            source=Frontier("source", source, side_limit, cap),
            target=Frontier("target", target, side_limit, cap),
            topic=topic,
            max_results=max_results,
            max_depth=max_depth,
            predicates=tuple(predicates) if predicates else None,
            stats=result.stats,
            deadline=(loop.time() + deadline_s) if deadline_s else None,
        )
        logger.info(
            f"Exploring {source} -> {target} (topic={topic!r}, max_depth={max_depth}, "
            f"max_results={max_results}, per-side depth={side_limit})"
        )

        sides = (search.source, search.target)
        turn = 0
        while any(s.state is SideState.EXPANDING for s in sides):
            if search.deadline is not None and loop.time() >= search.deadline:
                search.truncated = True
                break
            side = sides[turn % 2]
            turn += 1
            if side.state is SideState.EXHAUSTED:
                continue

            batch = side.pop_batch(self.cfg.expansion_batch, self._floor(search))
            if not batch:
                side.state = SideState.EXHAUSTED
                logger.debug(f"{side.name} frontier exhausted")
                continue

            search.stats.rounds += 1
            touched = await self._expand_round(side, batch, search)
            added = self._meet(side, touched, search)
            if added:
                logger.debug(f"Round {search.stats.rounds}: {added} new path(s) via {side.name} frontier")
            if search.truncated:
                break

        ranked = sorted(search.found.values(), key=DiscoveredPath.sort_key)
        result.total_found = len(ranked)
        result.paths = ranked[:max_results]
        result.truncated = search.truncated

        st = result.stats
        if st.anchors_expanded == 0 and st.anchors_failed > 0:
            logger.warning(f"Every anchor failed for {source} -> {target}; reporting no paths")
        logger.info(
            f"Exploration done: {result.total_found} path(s), {st.queries} queries, "
            f"{st.anchors_expanded} expanded, {st.anchors_failed} failed, "
            f"{st.edges_pruned} edges pruned{' (deadline reached)' if result.truncated else ''}"
        )
        return result
