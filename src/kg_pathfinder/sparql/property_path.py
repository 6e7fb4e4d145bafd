"""Property path resolution.

A property path is a dotted sequence of predicates describing a multi-hop
attribute access, e.g. ``kg:authoredBy.rdfs:label`` ("the label of the
author"). Each segment is one of:

- ``<http://...>``      a bracketed absolute IRI
- ``prefix:localName``  a prefixed name
- ``name``              a bare identifier; only allowed as the last segment,
                        where it names the result variable instead of adding a hop

Resolution produces the chained triple patterns that walk the path in a
single query. It is pure and never touches the network.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from kg_pathfinder.errors import MalformedPathError
from kg_pathfinder.util_text import local_name

_NAME_RE = re.compile(r"[A-Za-z0-9_-]+\Z")
_TOKEN_RE = re.compile(r"[^\s.<]+")
_IRI_FORBIDDEN_RE = re.compile(r'[\s<>"{}|^`\\]')
_VAR_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_]+")


@dataclass(frozen=True, slots=True)
class ResolvedPropertyPath:
    segments: tuple[str, ...]
    final_variable: str
    patterns: tuple[str, ...]
    path_id: str
    alias: str | None = None

    def group(self) -> str:
        return " ".join(self.patterns)


def _parse_segment(token: str, expression: str, pos: int) -> tuple[str, bool]:
    """Validate one non-bracketed token. Returns (segment, is_bare)."""
    if ":" in token:
        prefix, _, local = token.partition(":")
        if not prefix or not _NAME_RE.match(prefix):
            raise MalformedPathError(f"invalid prefix in {token!r}", expression, pos)
        if not local or not _NAME_RE.match(local):
            raise MalformedPathError(f"invalid local name in {token!r}", expression, pos)
        return token, False
    if not _NAME_RE.match(token):
        raise MalformedPathError(f"invalid identifier {token!r}", expression, pos)
    return token, True


def tokenize(expression: str) -> list[tuple[str, bool]]:
    """Split a path expression into ``(segment, is_bare)`` pairs."""
    if expression is None or not expression.strip():
        raise MalformedPathError("empty expression", expression or "")

    tokens: list[tuple[str, bool]] = []
    n = len(expression)
    pos = 0
    while True:
        while pos < n and expression[pos].isspace():
            pos += 1
        if pos >= n:
            # only reachable right after a separator
            raise MalformedPathError("dangling separator", expression, pos)

        start = pos
        if expression[pos] == "<":
            end = expression.find(">", pos + 1)
            if end == -1:
                raise MalformedPathError("unterminated bracketed identifier", expression, start)
            iri = expression[pos + 1 : end]
            if not iri or _IRI_FORBIDDEN_RE.search(iri):
                raise MalformedPathError(f"invalid IRI <{iri}>", expression, start)
            tokens.append((f"<{iri}>", False))
            pos = end + 1
        else:
            m = _TOKEN_RE.match(expression, pos)
            if not m:
                raise MalformedPathError("dangling separator", expression, start)
            tokens.append(_parse_segment(m.group(0), expression, start))
            pos = m.end()

        while pos < n and expression[pos].isspace():
            pos += 1
        if pos >= n:
            return tokens
        if expression[pos] != ".":
            raise MalformedPathError(f"unexpected {expression[pos]!r}", expression, pos)
        pos += 1


def _variable_stem(segments: list[str]) -> str:
    stem = "_".join(_VAR_UNSAFE_RE.sub("_", local_name(s)) for s in segments).strip("_")
    return stem or "value"


def resolve(
    expression: str,
    *,
    subject: str = "?entity",
    variable: str | None = None,
) -> ResolvedPropertyPath:
    """Resolve ``expression`` into chained triple patterns starting at ``subject``.

    The result variable is, in order of preference: ``variable``, the bare
    alias that ends the expression, or a name derived from the segments.
    Intermediate variables are ``?<stem>_<i>``.
    """
    tokens = tokenize(expression)

    alias: str | None = None
    for i, (tok, bare) in enumerate(tokens):
        if bare and i != len(tokens) - 1:
            raise MalformedPathError(f"bare identifier {tok!r} must be the last segment", expression)
    if tokens[-1][1]:
        alias = tokens[-1][0]
        tokens = tokens[:-1]
    if not tokens:
        raise MalformedPathError("no predicate to traverse", expression)

    segments = [tok for tok, _ in tokens]
    stem = (variable or alias or _variable_stem(segments)).lstrip("?")
    stem = _VAR_UNSAFE_RE.sub("_", stem)

    patterns: list[str] = []
    current = subject
    for i, seg in enumerate(segments):
        nxt = f"?{stem}" if i == len(segments) - 1 else f"?{stem}_{i}"
        patterns.append(f"{current} {seg} {nxt} .")
        current = nxt

    path_id = ".".join(segments + ([alias] if alias else []))
    return ResolvedPropertyPath(
        segments=tuple(segments),
        final_variable=current,
        patterns=tuple(patterns),
        path_id=path_id,
        alias=alias,
    )


@dataclass
class PropertyPathCache:
    """Memoizes resolutions within one exploration."""

    _entries: dict[tuple[str, str, str | None], ResolvedPropertyPath] = field(default_factory=dict)
    hits: int = 0

    def resolve(
        self, expression: str, *, subject: str = "?entity", variable: str | None = None
    ) -> ResolvedPropertyPath:
        key = (expression.strip() if expression else "", subject, variable)
        cached = self._entries.get(key)
        if cached is not None:
            self.hits += 1
            return cached
        resolved = resolve(expression, subject=subject, variable=variable)
        self._entries[key] = resolved
        return resolved

    def __len__(self) -> int:
        return len(self._entries)
