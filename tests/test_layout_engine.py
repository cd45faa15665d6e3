"""Tests for the layout engine."""

import math

import pytest

from stepflow.core.layout_engine import LayoutEngine, apply_layout, optimize_for_performance
from stepflow.models import GraphEdge, GraphNode, LayoutComplexity, LayoutOptions, Position

ALGORITHMS = ["hierarchical", "force-directed", "circular", "tree", "grid"]


def node(node_id, root=False, node_type="step", **extra):
    data = {"label": node_id}
    if root:
        data["isRoot"] = True
    return {"id": node_id, "type": node_type, "data": data, **extra}


def edge(source, target):
    return {"id": f"{source}-{target}", "source": source, "target": target}


def positions(result):
    return {n.id: (n.position.x, n.position.y) for n in result.nodes}


@pytest.fixture
def diamond():
    """A -> B, A -> C, B -> D."""
    return (
        [node("A", root=True), node("B"), node("C"), node("D")],
        [edge("A", "B"), edge("A", "C"), edge("B", "D")]
    )


class TestHierarchicalLayout:

    def test_levels_follow_breadth_first_distance(self, layout_engine, diamond):
        result = layout_engine.apply_layout(*diamond, "hierarchical")
        placed = positions(result)

        assert placed["A"] == (50, 50)
        assert placed["B"] == (-90, 200)
        assert placed["C"] == (190, 200)
        assert placed["D"] == (50, 350)

    def test_left_right_direction_swaps_axes(self, layout_engine, diamond):
        result = layout_engine.apply_layout(*diamond, "hierarchical", {"direction": "LR"})
        placed = positions(result)

        assert placed["A"] == (50, 50)
        assert placed["B"] == (330, -25)
        assert placed["C"] == (330, 125)
        assert placed["D"] == (610, 50)

    def test_root_flag_selects_root(self, layout_engine):
        nodes = [node("B"), node("A", root=True)]
        result = layout_engine.apply_layout(nodes, [edge("A", "B")], "hierarchical")
        placed = positions(result)

        assert placed["A"][1] == 50
        assert placed["B"][1] == 200

    def test_guard_cannot_be_root(self, layout_engine):
        nodes = [node("S"), node("G", root=True, node_type="guard")]
        root = LayoutEngine.find_root([GraphNode.model_validate(n) for n in nodes])

        assert root.id == "S"

    def test_unreached_nodes_share_root_level(self, layout_engine):
        nodes = [node("A", root=True), node("B"), node("X")]
        result = layout_engine.apply_layout(nodes, [edge("A", "B")], "hierarchical")
        placed = positions(result)

        assert placed["A"][1] == placed["X"][1] == 50
        assert placed["B"][1] == 200

    def test_cycles_terminate(self, layout_engine):
        nodes = [node("A", root=True), node("B")]
        result = layout_engine.apply_layout(nodes, [edge("A", "B"), edge("B", "A")], "hierarchical")

        assert positions(result) == {"A": (50, 50), "B": (50, 200)}

    def test_assign_levels_visits_each_node_once(self):
        levels = LayoutEngine.assign_levels("A", {"A": ["B", "C"], "B": ["C", "A"], "C": ["A"]})

        assert levels == {"A": 0, "B": 1, "C": 1}


class TestOtherAlgorithms:

    def test_tree_layout_splits_width_by_subtree(self, layout_engine):
        nodes = [node("A", root=True), node("B"), node("C")]
        result = layout_engine.apply_layout(nodes, [edge("A", "B"), edge("A", "C")], "tree")
        placed = positions(result)

        assert placed["A"] == (420, 50)
        assert placed["B"] == (140, 200)
        assert placed["C"] == (420, 200)

    def test_tree_layout_places_unreached_nodes_below(self, layout_engine):
        nodes = [node("A", root=True), node("B"), node("X")]
        result = layout_engine.apply_layout(nodes, [edge("A", "B")], "tree")
        placed = positions(result)

        assert placed["X"] == (50, 350)

    def test_tree_layout_terminates_on_cycles(self, layout_engine):
        nodes = [node("A", root=True), node("B"), node("C")]
        edges = [edge("A", "B"), edge("B", "C"), edge("C", "B"), edge("C", "A")]

        result = layout_engine.apply_layout(nodes, edges, "tree")

        assert {n.id for n in result.nodes} == {"A", "B", "C"}

    def test_grid_layout(self, layout_engine):
        nodes = [node(f"N{index}") for index in range(5)]
        result = layout_engine.apply_layout(nodes, [], "grid")
        placed = positions(result)

        assert placed["N0"] == (50, 50)
        assert placed["N2"] == (610, 50)
        assert placed["N3"] == (50, 200)

    def test_circular_layout(self, layout_engine):
        nodes = [node(f"N{index}") for index in range(4)]
        result = layout_engine.apply_layout(nodes, [], "circular")
        placed = positions(result)

        assert placed["N0"] == pytest.approx((600, 300))
        assert placed["N1"] == pytest.approx((400, 500))
        assert placed["N2"] == pytest.approx((200, 300))

    def test_circular_radius_grows_with_node_count(self, layout_engine):
        nodes = [node(f"N{index}") for index in range(10)]
        result = layout_engine.apply_layout(nodes, [], "circular")

        assert positions(result)["N0"] == pytest.approx((700, 300))

    def test_force_directed_is_seedable(self, layout_engine, diamond):
        first = layout_engine.apply_layout(*diamond, "force-directed", {"seed": 3})
        second = layout_engine.apply_layout(*diamond, "force-directed", {"seed": 3})

        assert positions(first) == positions(second)
        assert all(math.isfinite(x) and math.isfinite(y) for x, y in positions(first).values())

    def test_force_directed_separates_nodes(self, layout_engine):
        nodes = [
            node("A", position={"x": 100, "y": 100}),
            node("B", position={"x": 101, "y": 100})
        ]
        result = layout_engine.apply_layout(nodes, [], "force")
        placed = positions(result)

        assert abs(placed["A"][0] - placed["B"][0]) > 1

    def test_unknown_algorithm_falls_back_to_hierarchical(self, layout_engine, diamond):
        fallback = layout_engine.apply_layout(*diamond, "spiral")
        hierarchical = layout_engine.apply_layout(*diamond, "hierarchical")

        assert positions(fallback) == positions(hierarchical)

    def test_fallback_layout_uses_four_columns(self, layout_engine):
        nodes = [GraphNode(id=f"N{index}") for index in range(5)]
        result = layout_engine.fallback_layout(nodes, LayoutOptions())

        assert positions(result)["N3"] == (890, 50)
        assert positions(result)["N4"] == (50, 200)


class TestLayoutContract:

    @pytest.mark.parametrize("algorithm", ALGORITHMS)
    def test_empty_graph(self, layout_engine, algorithm):
        result = layout_engine.apply_layout([], [], algorithm)

        assert result.nodes == []
        assert (result.bounds.width, result.bounds.height) == (100, 100)

    @pytest.mark.parametrize("algorithm", ALGORITHMS)
    def test_bounds_contain_every_node(self, layout_engine, diamond, algorithm):
        nodes, edges = diamond
        nodes = nodes + [node("Wide", measured={"width": 400, "height": 40})]

        result = layout_engine.apply_layout(nodes, edges, algorithm, {"seed": 1})
        bounds = result.bounds

        for placed in result.nodes:
            assert bounds.min_x <= placed.position.x
            assert bounds.min_y <= placed.position.y
            assert placed.position.x + placed.width <= bounds.max_x
            assert placed.position.y + placed.height <= bounds.max_y
        assert bounds.width == pytest.approx(bounds.max_x - bounds.min_x)

    @pytest.mark.parametrize("algorithm", ["hierarchical", "circular", "tree", "grid"])
    def test_layouts_are_deterministic(self, layout_engine, diamond, algorithm):
        assert positions(layout_engine.apply_layout(*diamond, algorithm)) == \
            positions(layout_engine.apply_layout(*diamond, algorithm))

    @pytest.mark.parametrize("algorithm", ALGORITHMS)
    def test_inputs_are_not_mutated(self, layout_engine, algorithm):
        nodes = [GraphNode(id="A", data={"isRoot": True, "label": "A"}), GraphNode(id="B")]
        edges = [GraphEdge(source="A", target="B")]

        result = layout_engine.apply_layout(nodes, edges, algorithm)

        assert nodes[0].position is None and nodes[1].position is None
        assert [n.id for n in result.nodes] == ["A", "B"]
        assert result.nodes[0].data == {"isRoot": True, "label": "A"}

    def test_engine_default_options(self, diamond):
        engine = LayoutEngine(default_options=LayoutOptions.model_validate({"spacing": {"x": 100, "y": 100}}))

        placed = positions(engine.apply_layout(*diamond, "hierarchical"))
        assert placed["D"] == (50, 250)

        placed = positions(engine.apply_layout(*diamond, "hierarchical", {"padding": {"x": 0, "y": 0}}))
        assert placed["D"] == (0, 200)

    def test_partial_spacing_keeps_configured_axis(self, diamond):
        engine = LayoutEngine(default_options=LayoutOptions.model_validate({"spacing": {"x": 100, "y": 100}}))

        placed = positions(engine.apply_layout(*diamond, "hierarchical", {"spacing": {"x": 50}}))

        assert placed["B"] == (25, 150)
        assert placed["D"] == (50, 250)

    @pytest.mark.parametrize("algorithm", ALGORITHMS)
    def test_malformed_entries_are_skipped(self, layout_engine, algorithm):
        result = layout_engine.apply_layout(
            [{"id": "a"}, {"type": "step"}, None],
            [{"source": "a"}, edge("a", "b")],
            algorithm,
            {"seed": 1}
        )

        assert [n.id for n in result.nodes] == ["a"]
        assert result.nodes[0].position is not None

    def test_invalid_options_use_defaults(self, layout_engine, diamond):
        placed = positions(layout_engine.apply_layout(*diamond, "hierarchical", {"spacing": "wide"}))

        assert placed["D"] == (50, 350)

    def test_calculate_bounds(self):
        nodes = [
            GraphNode(id="A", position=Position(x=-10, y=20)),
            GraphNode(id="B", position=Position(x=300, y=400), measured={"width": 50, "height": 30})
        ]
        bounds = LayoutEngine.calculate_bounds(nodes).bounds

        assert (bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y) == (-10, 20, 350, 430)
        assert (bounds.width, bounds.height) == (360, 410)

    def test_module_shortcut(self, diamond):
        assert positions(apply_layout(*diamond)) == positions(LayoutEngine().apply_layout(*diamond))


class TestPerformanceAdvice:

    def test_small_graph(self, diamond):
        advice = optimize_for_performance(*diamond)

        assert not advice.should_virtualize
        assert not advice.clustering_recommended
        assert advice.layout_complexity == LayoutComplexity.LOW
        assert advice.recommendations == []

    def test_large_dense_graph(self, layout_engine):
        nodes = [node(f"N{index}") for index in range(101)]
        edges = [edge(f"N{index}", f"N{(index + step) % 101}") for index in range(101) for step in (1, 2, 3, 4)]

        advice = layout_engine.optimize_for_performance(nodes, edges)

        assert advice.should_virtualize
        assert advice.clustering_recommended
        assert advice.layout_complexity == LayoutComplexity.HIGH
        assert "Consider edge bundling for better visual clarity" in advice.recommendations

    def test_medium_complexity_and_guards(self, layout_engine):
        nodes = [node(f"G{index}", node_type="guard") for index in range(11)]
        edges = [edge(f"G{index}", f"G{(index + step) % 11}") for index in range(11) for step in (1, 2)]

        advice = layout_engine.optimize_for_performance(nodes, edges)

        assert advice.layout_complexity == LayoutComplexity.MEDIUM
        assert "Many decision points detected - consider simplifying logic" in advice.recommendations
