from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PathfinderSettings(BaseSettings):
    """Unified configuration for kg-pathfinder.

    Environment variables are prefixed with KG_PATHFINDER_.
    """

    model_config = SettingsConfigDict(env_prefix="KG_PATHFINDER_", extra="ignore")

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")

    # --- Transport ---
    request_timeout_s: float = Field(default=30.0, gt=0)
    connect_timeout_s: float = Field(default=10.0, gt=0)
    max_connections: int = Field(default=20, ge=1)
    retry_attempts: int = Field(default=2, ge=1, le=2, description="first try + at most one retry")
    retry_backoff_s: float = Field(default=0.5, ge=0)
    user_agent: str = "kg-pathfinder/0.1"

    # --- Search ---
    default_max_results: int = Field(default=20, ge=1)
    default_max_depth: int = Field(default=5, ge=1)
    edges_per_query: int = Field(default=100, ge=1, description="server-side LIMIT per anchor/direction")
    beam_width: int = Field(default=12, ge=1, description="children kept per expanded node")
    min_relevance: float = Field(default=0.15, ge=0, le=1)
    neutral_score: float = Field(default=0.5, ge=0, le=1)
    depth_penalty: float = Field(default=0.05, ge=0)
    max_concurrency: int = Field(default=8, ge=1)
    expansion_batch: int = Field(default=4, ge=1, description="frontier nodes expanded per turn")
    max_paths_per_entity: int = Field(default=4, ge=1)

    # --- Labels ---
    label_path: str = "rdfs:label"
    label_language: str = "en"

    # --- Predicates ---
    excluded_predicates: list[str] = Field(
        default_factory=lambda: [
            "http://dbpedia.org/ontology/wikiPageWikiLink",
            "http://dbpedia.org/ontology/wikiPageRedirects",
            "http://dbpedia.org/ontology/wikiPageDisambiguates",
            "http://www.w3.org/2002/07/owl#sameAs",
        ]
    )
    custom_prefixes: str | None = Field(
        default=None, description='e.g. "foaf:<http://xmlns.com/foaf/0.1/>,schema:<http://schema.org/>"'
    )

    # --- Relevance scoring ---
    st_model: str | None = Field(
        default=None,
        description="sentence-transformers model name (optional). If unset, use stub embedder.",
    )
    embedding_dim: int = 384


settings = PathfinderSettings()
