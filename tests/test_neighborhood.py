"""
Tests for the breadth-first neighborhood query engine.
"""

from __future__ import annotations

import pytest

from garden_graph.errors import InvalidQuery
from garden_graph.knowledge_graph.models import APPEARS_IN, RELATED_TO, NeighborhoodQuery
from garden_graph.knowledge_graph.neighborhood import NeighborhoodQueryEngine


@pytest.fixture
def engine() -> NeighborhoodQueryEngine:
    return NeighborhoodQueryEngine()


@pytest.fixture
def chain(make_graph):
    """A - B - C - D, plus an isolated E."""
    return make_graph(
        [("A", "B", 1.0), ("B", "C", 1.0), ("C", "D", 1.0)],
        nodes={"A": "entity", "B": "entity", "C": "entity", "D": "entity", "E": "concept"},
    )


class TestTraversal:
    """Depth, start set and direction."""

    def test_default_starts_from_every_node(self, engine, chain):
        sub = engine.query(chain, NeighborhoodQuery())
        assert sub.node_ids() == ["A", "B", "C", "D", "E"]

    def test_depth_bound(self, engine, chain):
        sub = engine.query(chain, NeighborhoodQuery(start_node_ids=("A",), max_depth=1))
        assert sub.node_ids() == ["A", "B"]
        assert sub.edge_ids() == ["A-B"]

    def test_depth_two(self, engine, chain):
        sub = engine.query(chain, NeighborhoodQuery(start_node_ids=("A",), max_depth=2))
        assert sub.node_ids() == ["A", "B", "C"]
        assert sub.edge_ids() == ["A-B", "B-C"]

    def test_depth_zero_returns_start_only(self, engine, chain):
        sub = engine.query(chain, NeighborhoodQuery(start_node_ids=("B",), max_depth=0))
        assert sub.node_ids() == ["B"]
        assert sub.edges == []

    def test_edges_are_bidirectional(self, engine, make_graph):
        """An X->Y edge is walked starting from Y."""
        graph = make_graph([("X", "Y", 1.0)])
        sub = engine.query(graph, NeighborhoodQuery(start_node_ids=("Y",), max_depth=1))
        assert sub.node_ids() == ["Y", "X"]
        assert sub.edge_ids() == ["X-Y"]

    def test_unknown_start_ids_ignored(self, engine, chain):
        sub = engine.query(chain, NeighborhoodQuery(start_node_ids=("nope",)))
        assert sub.is_empty
        assert sub.edges == []

    def test_deterministic(self, engine, chain):
        spec = NeighborhoodQuery(start_node_ids=("C", "A"), max_depth=1, limit=3)
        first = engine.query(chain, spec)
        for _ in range(5):
            again = engine.query(chain, spec)
            assert again.node_ids() == first.node_ids()
            assert again.edge_ids() == first.edge_ids()

    def test_seeds_follow_graph_order(self, engine, chain):
        """Start ids are queued in node order, not request order."""
        sub = engine.query(chain, NeighborhoodQuery(start_node_ids=("C", "A"), max_depth=0))
        assert sub.node_ids() == ["A", "C"]


class TestLimit:
    """Truncation keeps the first nodes reached and no dangling edges."""

    def test_limit_respected(self, engine, chain):
        for limit in (1, 2, 3, 10):
            sub = engine.query(chain, NeighborhoodQuery(limit=limit))
            assert len(sub.nodes) <= limit

    def test_limit_keeps_first_reached(self, engine, chain):
        sub = engine.query(chain, NeighborhoodQuery(limit=2))
        assert sub.node_ids() == ["A", "B"]
        assert sub.edge_ids() == ["A-B"]

    def test_no_dangling_edges(self, engine, make_graph):
        """Hub edges traversed before the cap only appear if both ends were kept."""
        star = make_graph([("C", "L1", 1.0), ("C", "L2", 1.0), ("C", "L3", 1.0)])
        sub = engine.query(star, NeighborhoodQuery(start_node_ids=("C",), limit=2))

        assert sub.node_ids() == ["C", "L1"]
        kept = set(sub.node_ids())
        assert sub.edge_ids() == ["C-L1"]
        assert all(e.source_id in kept and e.target_id in kept for e in sub.edges)


class TestFilters:
    """Node types filter seeds; edge labels filter traversal."""

    def test_edge_label_filter(self, engine, make_graph):
        graph = make_graph([("A", "B", 1.0, APPEARS_IN), ("A", "C", 1.0, RELATED_TO)])
        sub = engine.query(graph, NeighborhoodQuery(start_node_ids=("A",), edge_labels=(RELATED_TO,)))
        assert sub.node_ids() == ["A", "C"]
        assert sub.edge_ids() == ["A-C"]

    def test_node_types_filter_only_seeds(self, engine, make_graph):
        graph = make_graph(
            [("D", "E", 1.0)],
            nodes={"D": "document", "E": "entity"},
        )
        sub = engine.query(graph, NeighborhoodQuery(node_types=("document",), max_depth=1))
        assert sub.node_ids() == ["D", "E"]

    def test_node_types_exclude_other_seeds(self, engine, chain):
        sub = engine.query(chain, NeighborhoodQuery(node_types=("concept",)))
        assert sub.node_ids() == ["E"]


class TestValidation:
    @pytest.mark.parametrize(
        "spec",
        [
            NeighborhoodQuery(max_depth=-1),
            NeighborhoodQuery(limit=0),
            NeighborhoodQuery(node_types=("planet",)),
        ],
    )
    def test_invalid_specs(self, engine, chain, spec):
        with pytest.raises(InvalidQuery):
            engine.query(chain, spec)
