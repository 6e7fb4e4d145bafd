from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kg_pathfinder.errors import InvalidParameterError


class Direction(str, Enum):
    """How a predicate was traversed: subject->object or object->subject."""

    FORWARD = "forward"
    BACKWARD = "backward"

    def flipped(self) -> Direction:
        return Direction.BACKWARD if self is Direction.FORWARD else Direction.FORWARD


@dataclass(frozen=True, slots=True)
class Edge:
    """One RDF triple plus the direction it was walked in.

    The triple itself is never rewritten; ``origin``/``destination`` give the
    traversal view.
    """

    subject: str
    predicate: str
    object: str
    direction: Direction = Direction.FORWARD
    subject_label: str | None = None
    object_label: str | None = None
    predicate_label: str | None = None

    def __post_init__(self) -> None:
        if self.subject == self.object:
            raise ValueError(f"self-loop edge on {self.subject}")

    @property
    def origin(self) -> str:
        return self.subject if self.direction is Direction.FORWARD else self.object

    @property
    def destination(self) -> str:
        return self.object if self.direction is Direction.FORWARD else self.subject

    @property
    def destination_label(self) -> str | None:
        return self.object_label if self.direction is Direction.FORWARD else self.subject_label

    def reversed(self) -> Edge:
        return replace(self, direction=self.direction.flipped())

    def key(self) -> tuple[str, str, str, str]:
        return (self.subject, self.predicate, self.object, self.direction.value)


@dataclass(frozen=True, slots=True)
class FrontierNode:
    """An entity reached by one side of a search.

    ``cumulative_score`` is the optimistic bound on the final score of any
    path through this node; it never increases along a path.
    """

    entity: str
    depth: int
    path: tuple[Edge, ...] = ()
    hop_scores: tuple[float, ...] = ()
    cumulative_score: float = 1.0

    @property
    def entities(self) -> tuple[str, ...]:
        if not self.path:
            return (self.entity,)
        return (self.path[0].origin, *(e.destination for e in self.path))


@dataclass(frozen=True, slots=True)
class DiscoveredPath:
    """An ordered, cycle-free edge sequence from source to target."""

    source: str
    edges: tuple[Edge, ...]
    score: float

    @property
    def length(self) -> int:
        return len(self.edges)

    @property
    def target(self) -> str:
        return self.edges[-1].destination if self.edges else self.source

    @property
    def entities(self) -> tuple[str, ...]:
        return (self.source, *(e.destination for e in self.edges))

    def key(self) -> tuple[tuple[str, str, str, str], ...]:
        return tuple(e.key() for e in self.edges)

    def sort_key(self) -> tuple:
        # score desc, then shorter, then lexicographic entity sequence, then edges
        return (-self.score, self.length, self.entities, self.key())


@dataclass
class ExplorationStats:
    queries: int = 0
    anchors_expanded: int = 0
    anchors_failed: int = 0
    edges_seen: int = 0
    edges_pruned: int = 0
    scorer_fallbacks: int = 0
    rounds: int = 0


@dataclass
class ExplorationResult:
    source: str
    target: str
    topic: str
    paths: list[DiscoveredPath] = field(default_factory=list)
    total_found: int = 0
    truncated: bool = False
    stats: ExplorationStats = field(default_factory=ExplorationStats)

    @property
    def found(self) -> bool:
        """False is the explicit "searched and found nothing" signal."""
        return bool(self.paths)


class ExploreRequest(BaseModel):
    """Validated parameters of one exploration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    endpoint: str
    topic: str = ""
    max_results: int = Field(gt=0, strict=True)
    max_depth: int = Field(gt=0, strict=True)
    predicates: tuple[str, ...] | None = None
    label_path: str | None = None
    deadline_s: float | None = Field(default=None, gt=0)

    @field_validator("endpoint")
    @classmethod
    def _http_endpoint(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return v

    @classmethod
    def build(cls, **kwargs) -> ExploreRequest:
        """Validate or fail fast with InvalidParameterError."""
        try:
            return cls(**kwargs)
        except ValidationError as e:
            err = e.errors()[0]
            param = ".".join(str(p) for p in err.get("loc", ())) or "request"
            raise InvalidParameterError(param, err.get("msg", str(e))) from None
