from __future__ import annotations

import math
from typing import Protocol

import numpy as np

from kg_pathfinder.errors import ScorerUnavailableError
from kg_pathfinder.settings import PathfinderSettings, settings as default_settings

from .embedder import Embedder, build_embedder


class RelevanceScorer(Protocol):
    """Given label text and a topic, return a relevance score; higher is more relevant.

    A scorer may also offer ``score_many(texts, topic)`` returning one score per
    text; the engine prefers it when present. Any exception, or a non-finite
    score, means the neutral score is used for the affected edges.
    """

    def score(self, text: str, topic: str) -> float: ...


class EmbeddingScorer:
    """Cosine similarity between embeddings, clamped to [0, 1].

    Embeddings are memoized per instance, so the topic is embedded once per
    search no matter how many edges are scored against it.
    """

    def __init__(self, embedder: Embedder, *, instruction: str | None = None, cache_size: int = 8192):
        self.embedder = embedder
        self.instruction = instruction
        self.cache_size = cache_size
        self._cache: dict[str, np.ndarray] = {}

    def _embed(self, texts: list[str]) -> dict[str, np.ndarray]:
        try:
            raw = self.embedder.embed(texts)
        except Exception as e:
            raise ScorerUnavailableError(f"embedder failed: {e}") from e
        if len(raw) != len(texts):
            raise ScorerUnavailableError(f"embedder returned {len(raw)} vectors for {len(texts)} texts")
        out = {t: np.asarray(v, dtype=np.float32) for t, v in zip(texts, raw)}
        if len(self._cache) + len(out) > self.cache_size:
            self._cache.clear()
        self._cache.update(out)
        return out

    def _vectors(self, texts: list[str]) -> dict[str, np.ndarray]:
        """Vectors for ``texts``; everything not cached is embedded in one call."""
        found = {t: self._cache[t] for t in texts if t in self._cache}
        missing = [t for t in dict.fromkeys(texts) if t not in found]
        if missing:
            found.update(self._embed(missing))
        return found

    def _query_text(self, topic: str) -> str:
        if self.instruction:
            return f"Instruct: {self.instruction}\nQuery: {topic}"
        return topic

    @staticmethod
    def _similarity(a: np.ndarray, b: np.ndarray) -> float:
        denom = float(np.linalg.norm(a) * np.linalg.norm(b))
        if denom == 0.0:
            return 0.0
        return float(np.dot(a, b) / denom)

    def score(self, text: str, topic: str) -> float:
        if not text.strip():
            return 0.0
        query = self._query_text(topic)
        vecs = self._vectors([text, query])
        sim = self._similarity(vecs[text], vecs[query])
        if not math.isfinite(sim):
            raise ScorerUnavailableError(f"non-finite similarity for {text!r}")
        return min(1.0, max(0.0, sim))

    def score_many(self, texts: list[str], topic: str) -> list[float]:
        """One score per text, in order. NaN marks a text that could not be scored."""
        query = self._query_text(topic)
        vecs = self._vectors([t for t in texts if t.strip()] + [query])
        out: list[float] = []
        for text in texts:
            if not text.strip():
                out.append(0.0)
                continue
            sim = self._similarity(vecs[text], vecs[query])
            out.append(min(1.0, max(0.0, sim)) if math.isfinite(sim) else math.nan)
        return out


def build_scorer(cfg: PathfinderSettings | None = None) -> EmbeddingScorer:
    cfg = cfg or default_settings
    return EmbeddingScorer(build_embedder(st_model=cfg.st_model, dim=cfg.embedding_dim))
