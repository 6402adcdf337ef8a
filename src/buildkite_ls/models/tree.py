"""Position-annotated document tree: positions, ranges and nodes."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum

PATH_SEPARATOR = "/"

# Plain scalars that YAML resolves to null.
_NULL_VALUES = frozenset({"", "~", "null", "Null", "NULL"})


class NodeKind(StrEnum):
    SCALAR = "scalar"
    MAPPING = "mapping"
    SEQUENCE = "sequence"


@dataclass(frozen=True, order=True)
class Position:
    """Zero-based line/column; columns count code points of the source text."""

    line: int
    column: int

    def as_tuple(self) -> tuple[int, int]:
        return (self.line, self.column)


@dataclass(frozen=True)
class TextRange:
    """Half-open span ``[start, end)`` in the source text."""

    start: Position
    end: Position

    @classmethod
    def from_coords(cls, start_line: int, start_col: int, end_line: int, end_col: int) -> TextRange:
        return cls(Position(start_line, start_col), Position(end_line, end_col))

    @classmethod
    def empty(cls, pos: Position | None = None) -> TextRange:
        pos = pos or Position(0, 0)
        return cls(pos, pos)

    def contains_point(self, pos: Position) -> bool:
        """Point containment, inclusive on both ends."""
        return self.start <= pos <= self.end

    def contains_range(self, other: TextRange) -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: TextRange) -> bool:
        """True when the half-open spans share at least one character."""
        return self.start < other.end and other.start < self.end

    @property
    def height(self) -> int:
        return self.end.line - self.start.line + 1

    @property
    def width(self) -> int:
        return max(self.end.column - self.start.column, 0) + 1

    @property
    def area(self) -> int:
        return self.height * self.width

    def __str__(self) -> str:
        return (
            f"{self.start.line}:{self.start.column}-"
            f"{self.end.line}:{self.end.column}"
        )


def join_path(parent: str, segment: str | int) -> str:
    """Append one segment to a ``/``-delimited path (root is ``""``)."""
    return f"{parent}{PATH_SEPARATOR}{segment}" if parent else str(segment)


def split_path(path: str) -> list[str]:
    return path.split(PATH_SEPARATOR) if path else []


@dataclass(frozen=True)
class Node:
    """A structural element of a parsed document.

    Mapping entries are represented by their value node with ``key`` set; the
    entry's range runs from the key's first character to the end of the value.
    """

    kind: NodeKind
    range: TextRange
    path: str = ""
    key: str | None = None
    value: str | None = None
    children: tuple[Node, ...] = field(default=(), repr=False)
    depth: int = 0
    tag: str | None = None
    style: str | None = None
    flow: bool = False

    @property
    def is_mapping(self) -> bool:
        return self.kind is NodeKind.MAPPING

    @property
    def is_sequence(self) -> bool:
        return self.kind is NodeKind.SEQUENCE

    @property
    def is_scalar(self) -> bool:
        return self.kind is NodeKind.SCALAR

    @property
    def is_null(self) -> bool:
        """An empty, ``~`` or ``null`` plain scalar."""
        return self.is_scalar and not self.style and (self.value or "") in _NULL_VALUES

    def keys(self) -> list[str]:
        return [c.key for c in self.children if c.key is not None]

    def child(self, key: str) -> Node | None:
        """Return the mapping entry for *key*, or ``None``."""
        for c in self.children:
            if c.key == key:
                return c
        return None

    def walk(self) -> Iterator[Node]:
        """Yield this node and all descendants in document (pre-)order."""
        stack: list[Node] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    @property
    def segments(self) -> list[str]:
        return split_path(self.path)
