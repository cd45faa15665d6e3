"""Layout Engine computing 2-D node placements for workflow graphs."""

import math
import random
from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ..models.layout import (
    BoundingBox,
    GraphEdge,
    GraphNode,
    LayoutAlgorithm,
    LayoutComplexity,
    LayoutDirection,
    LayoutOptions,
    LayoutResult,
    PerformanceAdvice,
    Position,
)
from .logging import get_logger

logger = get_logger(__name__)

NodeInput = Union[GraphNode, Dict[str, Any]]
EdgeInput = Union[GraphEdge, Dict[str, Any]]

# Force-directed parameters
FORCE_ITERATIONS = 100
REPULSION_STRENGTH = 5000.0
ATTRACTION_STRENGTH = 0.1
DAMPING = 0.85
INITIAL_AREA_WIDTH = 800.0
INITIAL_AREA_HEIGHT = 600.0

# Circular parameters
CIRCLE_CENTER_X = 400.0
CIRCLE_CENTER_Y = 300.0
MIN_CIRCLE_RADIUS = 200.0
RADIUS_PER_NODE = 30.0

FALLBACK_COLUMNS = 4
EMPTY_BOUNDS = BoundingBox(width=100, height=100, min_x=0, min_y=0, max_x=100, max_y=100)


class LayoutEngine:
    """Positions graph nodes under one of five interchangeable algorithms.

    The engine holds no state between calls: every call works on its own
    copies and returns new nodes carrying a ``position``. Malformed graphs
    (no nodes, no resolvable root) degrade to :meth:`fallback_layout` instead
    of raising.
    """

    def __init__(self, default_options: Optional[LayoutOptions] = None):
        self._default_options = default_options or LayoutOptions()
        self._algorithms = {
            LayoutAlgorithm.HIERARCHICAL: self._apply_hierarchical_layout,
            LayoutAlgorithm.FORCE_DIRECTED: self._apply_force_directed_layout,
            LayoutAlgorithm.CIRCULAR: self._apply_circular_layout,
            LayoutAlgorithm.TREE: self._apply_tree_layout,
            LayoutAlgorithm.GRID: self._apply_grid_layout,
        }

    def apply_layout(
        self,
        nodes: Iterable[NodeInput],
        edges: Iterable[EdgeInput],
        algorithm: Union[LayoutAlgorithm, str, None] = LayoutAlgorithm.HIERARCHICAL,
        options: Union[LayoutOptions, Dict[str, Any], None] = None
    ) -> LayoutResult:
        """
        Compute positions for ``nodes`` using the selected algorithm.

        Args:
            nodes: Graph nodes (models or dicts)
            edges: Graph edges (models or dicts)
            algorithm: Algorithm selector; unknown values fall back to hierarchical
            options: Spacing, padding, direction and seed, merged over defaults

        Returns:
            LayoutResult with positioned copies of the nodes and their bounding box
        """
        graph_nodes = self._coerce_nodes(nodes)
        graph_edges = self._coerce_edges(edges)
        layout_options = self.resolve_options(options)

        resolved = LayoutAlgorithm.parse(algorithm)
        if not isinstance(algorithm, LayoutAlgorithm) and algorithm is not None:
            if str(algorithm).strip().lower() not in (resolved.value, "force"):
                logger.debug(f"Unknown layout algorithm '{algorithm}', using {resolved.value}")

        logger.debug(
            f"Applying {resolved.value} layout to {len(graph_nodes)} nodes "
            f"and {len(graph_edges)} edges"
        )
        return self._algorithms[resolved](graph_nodes, graph_edges, layout_options)

    def resolve_options(self, options: Union[LayoutOptions, Dict[str, Any], None]) -> LayoutOptions:
        """Merge caller options over the engine defaults; spacing and padding merge per axis."""
        if options is None:
            return self._default_options
        if isinstance(options, LayoutOptions):
            return options
        if not isinstance(options, dict):
            logger.warning(f"Ignoring layout options of type {type(options).__name__}")
            return self._default_options
        merged = self._default_options.model_dump(by_alias=True)
        for key, value in options.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value
        try:
            return LayoutOptions.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"Invalid layout options, using defaults: {e.error_count()} error(s)")
            return self._default_options

    # Algorithms

    def _apply_hierarchical_layout(
        self,
        nodes: List[GraphNode],
        edges: List[GraphEdge],
        options: LayoutOptions
    ) -> LayoutResult:
        root = self.find_root(nodes)
        if root is None:
            return self.fallback_layout(nodes, options)

        adjacency = self._build_adjacency(nodes, edges)
        levels = self.assign_levels(root.id, adjacency)

        # Unreached nodes share level 0 with the root
        level_groups: Dict[int, List[GraphNode]] = {}
        for node in nodes:
            level_groups.setdefault(levels.get(node.id, 0), []).append(node)

        spacing, padding = options.spacing, options.padding
        positions: Dict[str, Position] = {}

        for level, level_nodes in level_groups.items():
            if options.direction == LayoutDirection.LEFT_RIGHT:
                x = padding.x + level * spacing.x
                total_height = max(0, (len(level_nodes) - 1) * spacing.y)
                start_y = padding.y - total_height / 2
                for index, node in enumerate(level_nodes):
                    positions[node.id] = Position(x=x, y=start_y + index * spacing.y)
            else:
                y = padding.y + level * spacing.y
                total_width = max(0, (len(level_nodes) - 1) * spacing.x)
                start_x = padding.x - total_width / 2
                for index, node in enumerate(level_nodes):
                    positions[node.id] = Position(x=start_x + index * spacing.x, y=y)

        return self.calculate_bounds([self._with_position(node, positions[node.id]) for node in nodes])

    def _apply_force_directed_layout(
        self,
        nodes: List[GraphNode],
        edges: List[GraphEdge],
        options: LayoutOptions
    ) -> LayoutResult:
        spacing, padding = options.spacing, options.padding
        rng = random.Random(options.seed)

        xs: List[float] = []
        ys: List[float] = []
        for node in nodes:
            if node.position is not None:
                xs.append(node.position.x)
                ys.append(node.position.y)
            else:
                xs.append(rng.random() * INITIAL_AREA_WIDTH + padding.x)
                ys.append(rng.random() * INITIAL_AREA_HEIGHT + padding.y)

        index_by_id = {node.id: index for index, node in enumerate(nodes)}
        edge_pairs = [
            (index_by_id[edge.source], index_by_id[edge.target])
            for edge in edges
            if edge.source in index_by_id and edge.target in index_by_id
        ]

        count = len(nodes)
        for _ in range(FORCE_ITERATIONS):
            force_x = [0.0] * count
            force_y = [0.0] * count

            # Repulsion between every pair
            for i in range(count):
                for j in range(i + 1, count):
                    dx = xs[j] - xs[i]
                    dy = ys[j] - ys[i]
                    distance = math.sqrt(dx * dx + dy * dy) or 1.0

                    force = REPULSION_STRENGTH / (distance * distance)
                    fx = (dx / distance) * force
                    fy = (dy / distance) * force

                    force_x[i] -= fx
                    force_y[i] -= fy
                    force_x[j] += fx
                    force_y[j] += fy

            # Attraction along edges
            for source, target in edge_pairs:
                dx = xs[target] - xs[source]
                dy = ys[target] - ys[source]
                distance = math.sqrt(dx * dx + dy * dy) or 1.0

                force = ATTRACTION_STRENGTH * (distance - spacing.x)
                fx = (dx / distance) * force
                fy = (dy / distance) * force

                force_x[source] += fx
                force_y[source] += fy
                force_x[target] -= fx
                force_y[target] -= fy

            for i in range(count):
                xs[i] += force_x[i] * DAMPING
                ys[i] += force_y[i] * DAMPING

        return self.calculate_bounds([
            self._with_position(node, Position(x=xs[index], y=ys[index]))
            for index, node in enumerate(nodes)
        ])

    def _apply_circular_layout(
        self,
        nodes: List[GraphNode],
        edges: List[GraphEdge],
        options: LayoutOptions
    ) -> LayoutResult:
        if not nodes:
            return self.fallback_layout(nodes, options)

        count = len(nodes)
        radius = max(MIN_CIRCLE_RADIUS, count * RADIUS_PER_NODE)

        positioned = []
        for index, node in enumerate(nodes):
            angle = (2 * math.pi * index) / count
            positioned.append(self._with_position(node, Position(
                x=CIRCLE_CENTER_X + radius * math.cos(angle),
                y=CIRCLE_CENTER_Y + radius * math.sin(angle)
            )))

        return self.calculate_bounds(positioned)

    def _apply_tree_layout(
        self,
        nodes: List[GraphNode],
        edges: List[GraphEdge],
        options: LayoutOptions
    ) -> LayoutResult:
        """Proportional-width tree layout.

        A node with several parents keeps only the last one seen in the edge
        list, so general DAGs are laid out as a spanning tree. Nodes the tree
        walk never reaches go on a row under the deepest level.
        """
        root = self.find_root(nodes)
        if root is None:
            return self.fallback_layout(nodes, options)

        parents: Dict[str, str] = {}
        for edge in edges:
            if edge.target == root.id:
                continue
            parents[edge.target] = edge.source

        children: Dict[str, List[str]] = {}
        attached = set()
        for edge in edges:
            if parents.get(edge.target) == edge.source and edge.target not in attached:
                attached.add(edge.target)
                children.setdefault(edge.source, []).append(edge.target)

        # Walk from the root once, so a cycle can never be entered twice
        tree_children: Dict[str, List[str]] = {}
        visit_order: List[str] = []
        visited = {root.id}
        stack = [root.id]
        while stack:
            node_id = stack.pop()
            visit_order.append(node_id)
            tree_children[node_id] = []
            for child_id in children.get(node_id, []):
                if child_id not in visited:
                    visited.add(child_id)
                    tree_children[node_id].append(child_id)
                    stack.append(child_id)

        subtree_sizes: Dict[str, int] = {}
        for node_id in reversed(visit_order):
            subtree_sizes[node_id] = 1 + sum(subtree_sizes[child] for child in tree_children[node_id])

        horizontal = options.direction != LayoutDirection.LEFT_RIGHT
        breadth_spacing = options.spacing.x if horizontal else options.spacing.y
        depth_spacing = options.spacing.y if horizontal else options.spacing.x
        breadth_padding = options.padding.x if horizontal else options.padding.y
        depth_padding = options.padding.y if horizontal else options.padding.x

        placements: Dict[str, tuple] = {}
        total_width = subtree_sizes[root.id] * breadth_spacing
        pending = [(root.id, total_width / 2, 0, total_width)]
        while pending:
            node_id, center, depth, available = pending.pop()
            placements[node_id] = (center, depth)

            node_children = tree_children[node_id]
            if not node_children:
                continue

            current = center - available / 2
            for child_id in node_children:
                child_width = (subtree_sizes[child_id] / subtree_sizes[node_id]) * available
                pending.append((child_id, current + child_width / 2, depth + 1, child_width))
                current += child_width

        max_depth = max(depth for _, depth in placements.values())
        positions: Dict[str, Position] = {}
        for node_id, (breadth, depth) in placements.items():
            positions[node_id] = self._orient(breadth, depth_padding + depth * depth_spacing, horizontal)

        unplaced = [node for node in nodes if node.id not in positions]
        if unplaced:
            logger.debug(f"Tree layout could not reach {len(unplaced)} node(s) from root {root.id}")
            row = depth_padding + (max_depth + 1) * depth_spacing
            for index, node in enumerate(unplaced):
                positions[node.id] = self._orient(breadth_padding + index * breadth_spacing, row, horizontal)

        return self.calculate_bounds([self._with_position(node, positions[node.id]) for node in nodes])

    def _apply_grid_layout(
        self,
        nodes: List[GraphNode],
        edges: List[GraphEdge],
        options: LayoutOptions
    ) -> LayoutResult:
        if not nodes:
            return self.calculate_bounds([])

        spacing, padding = options.spacing, options.padding
        cols = math.ceil(math.sqrt(len(nodes)))
        rows = math.ceil(len(nodes) / cols)
        logger.debug(f"Grid layout using {cols} columns x {rows} rows")

        return self.calculate_bounds([
            self._with_position(node, Position(
                x=padding.x + (index % cols) * spacing.x,
                y=padding.y + (index // cols) * spacing.y
            ))
            for index, node in enumerate(nodes)
        ])

    # Shared helpers

    def fallback_layout(self, nodes: List[GraphNode], options: LayoutOptions) -> LayoutResult:
        """Deterministic row-major placement, four nodes per row."""
        spacing, padding = options.spacing, options.padding
        return self.calculate_bounds([
            self._with_position(node, Position(
                x=padding.x + (index % FALLBACK_COLUMNS) * spacing.x,
                y=padding.y + (index // FALLBACK_COLUMNS) * spacing.y
            ))
            for index, node in enumerate(nodes)
        ])

    @staticmethod
    def calculate_bounds(nodes: List[GraphNode]) -> LayoutResult:
        """Bounding box over positioned nodes, honouring measured sizes."""
        if not nodes:
            return LayoutResult(nodes=[], bounds=EMPTY_BOUNDS.model_copy())

        min_x = min_y = math.inf
        max_x = max_y = -math.inf
        for node in nodes:
            position = node.position or Position()
            min_x = min(min_x, position.x)
            min_y = min(min_y, position.y)
            max_x = max(max_x, position.x + node.width)
            max_y = max(max_y, position.y + node.height)

        return LayoutResult(
            nodes=nodes,
            bounds=BoundingBox(
                width=max_x - min_x,
                height=max_y - min_y,
                min_x=min_x,
                min_y=min_y,
                max_x=max_x,
                max_y=max_y
            )
        )

    @staticmethod
    def find_root(nodes: List[GraphNode]) -> Optional[GraphNode]:
        """The node flagged ``isRoot``, else the first node, else None."""
        for node in nodes:
            if node.is_root:
                return node
        return nodes[0] if nodes else None

    @staticmethod
    def assign_levels(root_id: str, adjacency: Dict[str, List[str]]) -> Dict[str, int]:
        """Breadth-first levels from ``root_id``; each node is leveled once."""
        levels: Dict[str, int] = {}
        queue = deque([(root_id, 0)])
        visited = set()

        while queue:
            node_id, level = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)
            levels[node_id] = level

            for child_id in adjacency.get(node_id, []):
                if child_id not in visited:
                    queue.append((child_id, level + 1))

        return levels

    @staticmethod
    def _build_adjacency(nodes: List[GraphNode], edges: List[GraphEdge]) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = {node.id: [] for node in nodes}
        for edge in edges:
            adjacency.setdefault(edge.source, []).append(edge.target)
        return adjacency

    @staticmethod
    def _orient(breadth: float, depth: float, horizontal: bool) -> Position:
        if horizontal:
            return Position(x=breadth, y=depth)
        return Position(x=depth, y=breadth)

    @staticmethod
    def _with_position(node: GraphNode, position: Position) -> GraphNode:
        return node.model_copy(update={"position": position})

    @staticmethod
    def _coerce_all(items: Iterable[Any], model: Any, kind: str) -> List[Any]:
        """Validate ``items`` into ``model`` instances, skipping malformed entries."""
        coerced = []
        for index, item in enumerate(items):
            if isinstance(item, model):
                coerced.append(item)
                continue
            try:
                coerced.append(model.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed {kind} at index {index}: {e.error_count()} error(s)")
        return coerced

    def _coerce_nodes(self, nodes: Iterable[NodeInput]) -> List[GraphNode]:
        return self._coerce_all(nodes, GraphNode, "node")

    def _coerce_edges(self, edges: Iterable[EdgeInput]) -> List[GraphEdge]:
        return self._coerce_all(edges, GraphEdge, "edge")

    # Advisory

    def optimize_for_performance(
        self,
        nodes: Iterable[NodeInput],
        edges: Iterable[EdgeInput]
    ) -> PerformanceAdvice:
        """
        Classify rendering complexity and suggest mitigations.

        Args:
            nodes: Graph nodes
            edges: Graph edges

        Returns:
            PerformanceAdvice; purely advisory, layouts are unaffected
        """
        graph_nodes = self._coerce_nodes(nodes)
        edge_count = len(self._coerce_edges(edges))
        node_count = len(graph_nodes)
        ratio = edge_count / max(node_count, 1)

        advice = PerformanceAdvice()

        if node_count > 100:
            advice.should_virtualize = True
            advice.recommendations.append("Enable canvas virtualization for better performance")

        if node_count > 50:
            advice.clustering_recommended = True
            advice.recommendations.append("Consider grouping related nodes into clusters")

        if ratio > 3:
            advice.layout_complexity = LayoutComplexity.HIGH
            advice.recommendations.append(
                "High connectivity detected - force-directed layout may perform better"
            )
        elif ratio > 1.5:
            advice.layout_complexity = LayoutComplexity.MEDIUM
            advice.recommendations.append("Medium complexity - hierarchical layout recommended")

        if edge_count > 200:
            advice.recommendations.append("Consider edge bundling for better visual clarity")

        guard_count = sum(1 for node in graph_nodes if node.is_guard)
        if guard_count > 10:
            advice.recommendations.append("Many decision points detected - consider simplifying logic")

        return advice


_default_engine = LayoutEngine()


def apply_layout(
    nodes: Iterable[NodeInput],
    edges: Iterable[EdgeInput],
    algorithm: Union[LayoutAlgorithm, str, None] = LayoutAlgorithm.HIERARCHICAL,
    options: Union[LayoutOptions, Dict[str, Any], None] = None
) -> LayoutResult:
    """Module-level shortcut for :meth:`LayoutEngine.apply_layout`."""
    return _default_engine.apply_layout(nodes, edges, algorithm, options)


def optimize_for_performance(nodes: Iterable[NodeInput], edges: Iterable[EdgeInput]) -> PerformanceAdvice:
    """Module-level shortcut for :meth:`LayoutEngine.optimize_for_performance`."""
    return _default_engine.optimize_for_performance(nodes, edges)
