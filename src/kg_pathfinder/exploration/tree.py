from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from kg_pathfinder.sparql.prefixes import PrefixManager, default_prefix_manager

from .models import DiscoveredPath, Direction, ExplorationResult


@dataclass
class TreeNode:
    entity: str
    is_target: bool = False
    # (predicate, direction, entity) -> child, in first-seen order
    children: dict[tuple[str, Direction, str], TreeNode] = field(default_factory=dict)


def build_tree(paths: Sequence[DiscoveredPath], source: str, target: str) -> TreeNode:
    """Group paths by shared prefix. Built once after the search; never mutated during it."""
    root = TreeNode(entity=source, is_target=source == target)
    for path in paths:
        node = root
        for edge in path.edges:
            key = (edge.predicate, edge.direction, edge.destination)
            child = node.children.get(key)
            if child is None:
                child = TreeNode(entity=edge.destination, is_target=edge.destination == target)
                node.children[key] = child
            node = child
    return root


def collect_labels(paths: Sequence[DiscoveredPath]) -> dict[str, str]:
    labels: dict[str, str] = {}
    for path in paths:
        for e in path.edges:
            if e.subject_label:
                labels.setdefault(e.subject, e.subject_label)
            if e.object_label:
                labels.setdefault(e.object, e.object_label)
    return labels


class PathTreeFormatter:
    """Renders discovered paths as a deterministic text tree.

    Output contract: results carry "Path Tree:" and "Showing K of N paths";
    an empty input carries "No paths found".
    """

    def __init__(self, prefixes: PrefixManager | None = None, *, compress: bool = True):
        self.prefixes = prefixes or default_prefix_manager()
        self.compress = compress

    def _entity(self, node: TreeNode, labels: Mapping[str, str]) -> str:
        text = node.entity
        label = labels.get(node.entity)
        if label:
            text += f' "{label}"'
        if node.is_target:
            text += " ★"
        return text

    def _render_children(self, node: TreeNode, prefix: str, labels: Mapping[str, str], out: list[str]) -> None:
        items = list(node.children.items())
        for i, ((predicate, direction, _), child) in enumerate(items):
            last = i == len(items) - 1
            marker = "^" if direction is Direction.BACKWARD else ""
            out.append(f"{prefix}{'└── ' if last else '├── '}[{marker}{predicate}]")
            inner = prefix + ("    " if last else "│   ")
            out.append(f"{inner}└── {self._entity(child, labels)}")
            self._render_children(child, inner + "    ", labels, out)

    def _finish(self, text: str) -> str:
        return self.prefixes.compress_text(text) if self.compress else text

    def render(
        self,
        paths: Sequence[DiscoveredPath],
        source: str,
        target: str,
        *,
        total: int | None = None,
        topic: str = "",
        truncated: bool = False,
        labels: Mapping[str, str] | None = None,
    ) -> str:
        note = "\n(search stopped early at the deadline; results may be incomplete)" if truncated else ""
        if not paths:
            return self._finish(f"No paths found between:\n- {source}\n- {target}\n{note}".rstrip() + "\n")

        all_labels = {**collect_labels(paths), **(labels or {})}
        total = len(paths) if total is None else max(total, len(paths))
        ranked_by = f' ranked by relevance to "{topic}"' if topic.strip() else ""

        lines = [
            f"# Path Tree: {source} → {target}",
            "",
            f"Showing {len(paths)} of {total} paths{ranked_by}:",
            "",
            "```",
        ]
        root = build_tree(paths, source, target)
        lines.append(self._entity(root, all_labels))
        self._render_children(root, "", all_labels, lines)
        lines.append("```")

        if any(e.direction is Direction.BACKWARD for p in paths for e in p.edges):
            lines.append("[^p] marks a predicate followed from object to subject.")

        lines.append("")
        lines.append("Ranked paths:")
        for i, p in enumerate(paths, 1):
            hops = "hop" if p.length == 1 else "hops"
            lines.append(f"{i}. score {p.score:.3f}, {p.length} {hops}: {' → '.join(p.entities)}")
        if note:
            lines.append(note.strip())
        return self._finish("\n".join(lines) + "\n")

    def render_result(self, result: ExplorationResult, labels: Mapping[str, str] | None = None) -> str:
        return self.render(
            result.paths,
            result.source,
            result.target,
            total=result.total_found,
            topic=result.topic,
            truncated=result.truncated,
            labels=labels,
        )
