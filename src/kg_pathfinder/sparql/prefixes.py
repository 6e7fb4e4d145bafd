from __future__ import annotations

import logging
import re
from functools import lru_cache

from kg_pathfinder.settings import settings

logger = logging.getLogger(__name__)

BUILTIN_PREFIXES: dict[str, str] = {
    "dbo": "http://dbpedia.org/ontology/",
    "dbr": "http://dbpedia.org/resource/",
    "dbp": "http://dbpedia.org/property/",
    "rdfs": "http://www.w3.org/2000/01/rdf-schema#",
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "owl": "http://www.w3.org/2002/07/owl#",
    "xsd": "http://www.w3.org/2001/XMLSchema#",
    "skos": "http://www.w3.org/2004/02/skos/core#",
    "foaf": "http://xmlns.com/foaf/0.1/",
    "dc": "http://purl.org/dc/elements/1.1/",
    "dct": "http://purl.org/dc/terms/",
    "schema": "http://schema.org/",
}

_CUSTOM_PAIR_RE = re.compile(r"^([A-Za-z][\w-]*):<(.+)>$")


def parse_custom_prefixes(raw: str | None) -> dict[str, str]:
    """Parse ``"foaf:<http://xmlns.com/foaf/0.1/>,schema:<http://schema.org/>"``."""
    out: dict[str, str] = {}
    if not raw:
        return out
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        m = _CUSTOM_PAIR_RE.match(pair)
        if not m:
            logger.warning(f"Ignoring malformed custom prefix entry: {pair!r}")
            continue
        out[m.group(1)] = m.group(2)
    return out


class PrefixManager:
    """Namespace table used to expand names in queries and compress IRIs in output."""

    def __init__(self, prefixes: dict[str, str] | None = None, custom: str | None = None):
        self._map: dict[str, str] = dict(BUILTIN_PREFIXES if prefixes is None else prefixes)
        self._map.update(parse_custom_prefixes(custom))

    @property
    def prefixes(self) -> dict[str, str]:
        return dict(self._map)

    def _by_longest_namespace(self) -> list[tuple[str, str]]:
        # longest namespace first so nested namespaces compress to the most specific prefix
        return sorted(self._map.items(), key=lambda kv: (-len(kv[1]), kv[0]))

    def compress(self, uri: str) -> str:
        for prefix, ns in self._by_longest_namespace():
            if uri.startswith(ns) and len(uri) > len(ns):
                return f"{prefix}:{uri[len(ns):]}"
        return uri

    def expand(self, name: str) -> str:
        """Expand ``prefix:local`` to a full IRI; unknown prefixes are returned as-is."""
        if name.startswith("<") and name.endswith(">"):
            return name[1:-1]
        prefix, sep, local = name.partition(":")
        if sep and prefix in self._map:
            return self._map[prefix] + local
        return name

    def declarations(self, only: set[str] | None = None) -> str:
        items = sorted(self._map.items())
        return "\n".join(
            f"PREFIX {p}: <{ns}>" for p, ns in items if only is None or p in only
        )

    def add_to_query(self, query: str) -> str:
        declared = set(re.findall(r"(?im)^\s*PREFIX\s+([\w-]*):", query))
        missing = {p for p in self._map if p not in declared}
        if not missing:
            return query
        return f"{self.declarations(missing)}\n\n{query}"

    def compress_text(self, text: str) -> str:
        """Replace every known namespace in ``text`` and prepend the prefixes used."""
        used: set[str] = set()
        for prefix, ns in self._by_longest_namespace():
            if ns in text:
                text = text.replace(ns, f"{prefix}:")
                used.add(prefix)
        if not used:
            return text
        return f"{self.declarations(used)}\n\n{text}"


@lru_cache(maxsize=1)
def default_prefix_manager() -> PrefixManager:
    return PrefixManager(custom=settings.custom_prefixes)
