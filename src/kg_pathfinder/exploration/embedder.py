from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


class Embedder:
    """Turns label text into vectors, one row per input text."""

    dim: int

    def embed(self, texts: list[str]) -> np.ndarray:
        raise NotImplementedError


@dataclass
class StubEmbedder(Embedder):
    """Hashed character trigrams, L2-normalized.

    Deterministic and download-free; close enough for labels that share
    words with the topic ("Genre Rock Music" vs "music").
    """

    dim: int = 384

    def _row(self, text: str) -> np.ndarray:
        v = np.zeros(self.dim, dtype=np.float32)
        b = f"  {text.lower()}  ".encode("utf-8", errors="ignore")
        for i in range(len(b) - 2):
            v[(b[i] * 961 + b[i + 1] * 31 + b[i + 2]) % self.dim] += 1.0
        norm = float(np.linalg.norm(v))
        return v / norm if norm else v

    def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dim), dtype=np.float32)
        return np.stack([self._row(t) for t in texts])


class SentenceTransformersEmbedder(Embedder):
    def __init__(self, model_name: str):
        from sentence_transformers import SentenceTransformer

        self._m = SentenceTransformer(model_name)
        self.dim = int(self._m.get_sentence_embedding_dimension() or 384)
        logger.info(f"Loaded sentence-transformers model {model_name} (dim={self.dim})")

    def embed(self, texts: list[str]) -> np.ndarray:
        return np.asarray(
            self._m.encode(texts, normalize_embeddings=True, convert_to_numpy=True), dtype=np.float32
        )


def build_embedder(*, st_model: str | None, dim: int) -> Embedder:
    if st_model:
        try:
            return SentenceTransformersEmbedder(st_model)
        except (ImportError, OSError) as e:
            logger.warning(f"Could not load sentence-transformers model {st_model!r} ({e}); using stub embedder")
    return StubEmbedder(dim=dim)
