"""Point and containment queries over a parsed document tree."""

from __future__ import annotations

from bisect import bisect_right

from buildkite_ls.models.tree import Node, Position


class PositionIndex:
    """Maps cursor coordinates to the most specific containing node.

    Built once per successful parse. For every collection node the sorted
    start positions of its children are cached, so a query bisects its way
    down the tree instead of scanning. The tree remains the source of truth:
    coordinates are never used as keys.
    """

    def __init__(self, root: Node) -> None:
        self._root = root
        self._by_path: dict[str, Node] = {}
        # Keyed by node identity; nodes live as long as the root.
        self._parents: dict[int, Node] = {}
        self._child_starts: dict[int, list[tuple[int, int]]] = {}
        for node in root.walk():
            self._by_path[node.path] = node
            if node.children:
                self._child_starts[id(node)] = [c.range.start.as_tuple() for c in node.children]
                for child in node.children:
                    self._parents[id(child)] = node

    @property
    def root(self) -> Node:
        return self._root

    @property
    def paths(self) -> list[str]:
        """All node paths in document order."""
        return list(self._by_path)

    def __len__(self) -> int:
        return len(self._by_path)

    def get(self, path: str) -> Node | None:
        return self._by_path.get(path)

    # -- queries -------------------------------------------------------------

    def _containing(self, point: Position) -> list[Node]:
        """Every node that claims *point* (ends inclusive)."""
        found: list[Node] = []
        if self._root.range.contains_point(point):
            self._claim(self._root, point, found)
        return found

    def _claim(self, node: Node, point: Position, found: list[Node]) -> bool:
        """Collect *node* and its descendants that claim *point*.

        A scalar or flow collection claims every point in its range. A block
        collection claims a point only through a child, or on its own header
        line before the first child (``agents:``); blank and comment lines
        between children belong to nothing.
        """
        claimed = False
        starts = self._child_starts.get(id(node))
        if starts:
            # Siblings never overlap, but with inclusive ends a point can sit
            # on the end of one sibling and the start of the next.
            i = bisect_right(starts, point.as_tuple())
            for child in node.children[max(i - 2, 0) : i]:
                if child.range.contains_point(point) and self._claim(child, point, found):
                    claimed = True
        if claimed or self._owns(node, point):
            found.append(node)
            return True
        return False

    @staticmethod
    def _owns(node: Node, point: Position) -> bool:
        if node.is_scalar or node.flow or not node.children:
            return True
        first = node.children[0].range.start
        return point.line == node.range.start.line and point < first

    def _enclosing(self, point: Position) -> list[Node]:
        """Every node whose range contains *point*, gaps between children included."""
        if not self._root.range.contains_point(point):
            return []
        found: list[Node] = []
        frontier = [self._root]
        key = point.as_tuple()
        while frontier:
            node = frontier.pop()
            found.append(node)
            starts = self._child_starts.get(id(node))
            if not starts:
                continue
            i = bisect_right(starts, key)
            for child in node.children[max(i - 2, 0) : i]:
                if child.range.contains_point(point):
                    frontier.append(child)
        return found

    @staticmethod
    def _specificity(node: Node) -> tuple[int, int, int]:
        return (node.range.height, node.range.area, -node.depth)

    def node_at(self, line: int, column: int) -> Node | None:
        """Return the most specific node containing the point, or ``None``.

        Smallest range wins (lines spanned first, then area); ties go to the
        deepest node.
        """
        candidates = self._containing(Position(line, column))
        if not candidates:
            return None
        return min(candidates, key=self._specificity)

    def enclosing(self, line: int, column: int) -> Node | None:
        """Most specific node whose range spans the point.

        Unlike :meth:`node_at`, a blank line inside a block mapping resolves
        to that mapping; completion uses this to find where a new key goes.
        """
        candidates = self._enclosing(Position(line, column))
        if not candidates:
            return None
        return min(candidates, key=self._specificity)

    def ancestor_chain(self, line: int, column: int) -> list[Node]:
        """Nodes from the root down to the most specific node at the point.

        The root itself is omitted unless it is the most specific node. Empty
        when no node contains the point.
        """
        target = self.node_at(line, column)
        if target is None:
            return []
        if target is self._root:
            return [target]
        chain = [target]
        parent = self._parents.get(id(target))
        while parent is not None and parent is not self._root:
            chain.append(parent)
            parent = self._parents.get(id(parent))
        chain.reverse()
        return chain
