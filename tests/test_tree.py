from conftest import REL, ex
from kg_pathfinder.exploration.models import DiscoveredPath, Direction, Edge
from kg_pathfinder.exploration.tree import PathTreeFormatter, build_tree
from kg_pathfinder.sparql.prefixes import PrefixManager

DBR = "http://dbpedia.org/resource/"
DBO = "http://dbpedia.org/ontology/"


def _path(*hops, score=0.5, source=None):
    edges = tuple(Edge(s, p, o, d) for s, p, o, d in hops)
    return DiscoveredPath(source=source or edges[0].origin, edges=edges, score=score)


F = Direction.FORWARD
B = Direction.BACKWARD


class TestBuildTree:
    def test_shared_prefix_is_grouped(self):
        p1 = _path((ex("A"), REL, ex("B"), F), (ex("B"), REL, ex("D"), F))
        p2 = _path((ex("A"), REL, ex("B"), F), (ex("B"), REL, ex("C"), F), (ex("C"), REL, ex("D"), F))

        root = build_tree([p1, p2], ex("A"), ex("D"))

        assert len(root.children) == 1
        b = next(iter(root.children.values()))
        assert [c.entity for c in b.children.values()] == [ex("D"), ex("C")]
        assert b.children[(REL, F, ex("D"))].is_target

    def test_children_follow_ranking_order(self):
        p1 = _path((ex("A"), REL, ex("Z"), F), (ex("Z"), REL, ex("D"), F), score=0.9)
        p2 = _path((ex("A"), REL, ex("B"), F), (ex("B"), REL, ex("D"), F), score=0.4)

        root = build_tree([p1, p2], ex("A"), ex("D"))

        assert [c.entity for c in root.children.values()] == [ex("Z"), ex("B")]


class TestRender:
    def test_header_and_tree(self):
        p = _path((ex("A"), REL, ex("B"), F), (ex("C"), REL, ex("B"), B))

        text = PathTreeFormatter(PrefixManager(prefixes={})).render([p], ex("A"), ex("C"), total=3, topic="music")

        assert f"# Path Tree: {ex('A')} → {ex('C')}" in text
        assert 'Showing 1 of 3 paths ranked by relevance to "music"' in text
        assert f"└── [{REL}]" in text
        assert f"└── [^{REL}]" in text
        assert f"{ex('C')} ★" in text
        assert "1. score 0.500, 2 hops" in text

    def test_no_paths(self):
        text = PathTreeFormatter().render([], ex("A"), ex("D"))

        assert text.startswith("No paths found between:")
        assert f"- {ex('A')}" in text
        assert f"- {ex('D')}" in text

    def test_truncated_note(self):
        text = PathTreeFormatter().render([], ex("A"), ex("D"), truncated=True)

        assert "No paths found" in text
        assert "deadline" in text

    def test_identity_path(self):
        p = DiscoveredPath(source=ex("A"), edges=(), score=1.0)

        text = PathTreeFormatter().render([p], ex("A"), ex("A"))

        assert "Showing 1 of 1 paths" in text
        assert f"{ex('A')} ★" in text

    def test_iris_are_compressed_with_declarations(self):
        p = _path((DBR + "Apple_Inc.", DBO + "founder", DBR + "Steve_Jobs", F))

        text = PathTreeFormatter().render([p], DBR + "Apple_Inc.", DBR + "Steve_Jobs")

        assert text.startswith("PREFIX dbo: <http://dbpedia.org/ontology/>\nPREFIX dbr: <http://dbpedia.org/resource/>")
        assert "# Path Tree: dbr:Apple_Inc. → dbr:Steve_Jobs" in text
        assert "[dbo:founder]" in text
        assert DBR + "Steve_Jobs" not in text.split("\n\n", 1)[1]

    def test_labels_are_shown(self):
        edge = Edge(ex("A"), REL, ex("B"), F, object_label="Bee")
        p = DiscoveredPath(source=ex("A"), edges=(edge,), score=0.5)

        text = PathTreeFormatter().render([p], ex("A"), ex("B"), labels={ex("A"): "Ay"})

        assert f'{ex("A")} "Ay"' in text
        assert f'{ex("B")} "Bee" ★' in text

    def test_rendering_is_deterministic(self):
        paths = [
            _path((ex("A"), REL, ex("B"), F), (ex("B"), REL, ex("D"), F), score=0.7),
            _path((ex("A"), REL, ex("C"), F), (ex("C"), REL, ex("D"), F), score=0.6),
        ]
        fmt = PathTreeFormatter()

        assert fmt.render(paths, ex("A"), ex("D")) == fmt.render(list(paths), ex("A"), ex("D"))
