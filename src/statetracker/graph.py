"""Access-path trie.

Each edge is one path segment. A node counts how many recorded reads
terminate on it (occupancy) and keeps one teardown per read, which releases
that unit again. collect_remarkable() reports occupied nodes and retires
them, so a second collection only sees reads made since the first.
"""

from __future__ import annotations

from typing import Callable, Hashable, Iterator, Sequence

# Occupancy released by one teardown.
DECAY = 1


class PathGraph:
    """One node of the access-path trie. The root has an empty slug."""

    __slots__ = ("point", "slug", "children", "occupancy", "pending_teardowns")

    def __init__(self, point: Hashable = None, slug: tuple = ()) -> None:
        self.point = point
        self.slug = slug
        self.children: dict[Hashable, PathGraph] = {}
        self.occupancy = 0
        self.pending_teardowns: list[Callable[[], None]] = []

    @property
    def is_root(self) -> bool:
        return not self.slug

    @property
    def occupied(self) -> bool:
        return self.occupancy > 0

    def child(self, point: Hashable) -> PathGraph:
        """Return the child for ``point``, creating it only if absent."""
        node = self.children.get(point)
        if node is None:
            node = PathGraph(point, self.slug + (point,))
            self.children[point] = node
        return node

    def access(self, path: Sequence[Hashable]) -> PathGraph:
        """Record one read of ``path`` (relative to this node)."""
        node = self
        for point in path:
            node = node.child(point)
        node.occupancy += 1

        def _teardown(node: PathGraph = node) -> None:
            node.occupancy -= DECAY

        node.pending_teardowns.append(_teardown)
        return node

    def find(self, path: Sequence[Hashable]) -> PathGraph | None:
        node: PathGraph | None = self
        for point in path:
            node = node.children.get(point)
            if node is None:
                return None
        return node

    def collect_remarkable(self) -> list[tuple]:
        """Slugs of every occupied non-root node, deepest first per branch."""
        result: list[tuple] = []
        for node in self.children.values():
            result.extend(node.collect_remarkable())
        if self.occupied:
            teardowns, self.pending_teardowns = self.pending_teardowns, []
            for teardown in teardowns:
                teardown()
            if not self.is_root:
                result.append(self.slug)
        return result

    def get_paths(self) -> list[tuple]:
        """Slugs of all leaves, in insertion order. No side effects."""
        return [node.slug for node in self.walk() if not node.children and not node.is_root]

    def walk(self) -> Iterator[PathGraph]:
        yield self
        for node in self.children.values():
            yield from node.walk()

    def __bool__(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self.children)

    def __repr__(self) -> str:
        return f"PathGraph({self.slug!r}, children={list(self.children)!r}, occupancy={self.occupancy})"
