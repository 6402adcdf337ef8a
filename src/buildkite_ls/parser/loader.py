"""YAML tree builder with exact source ranges for every node."""

from __future__ import annotations

import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import MarkedYAMLError, YAMLError
from ruamel.yaml.events import (
    AliasEvent,
    DocumentEndEvent,
    DocumentStartEvent,
    MappingEndEvent,
    MappingStartEvent,
    ScalarEvent,
    SequenceEndEvent,
    SequenceStartEvent,
    StreamEndEvent,
    StreamStartEvent,
)
from ruamel.yaml.reader import ReaderError

from buildkite_ls.models.tree import Node, NodeKind, Position, TextRange, join_path

# ---------------------------------------------------------------------------
# Safety limits
# ---------------------------------------------------------------------------

_MAX_DOCUMENT_SIZE = 5_000_000  # 5M characters
_MAX_NODE_COUNT = 100_000
_MAX_DEPTH = 64

# Line breaks as counted by ruamel.yaml's reader.
_LINE_BREAK_RE = re.compile(r"\r\n|[\n\r\x85\u2028\u2029]")


def split_lines(text: str) -> list[str]:
    """Split *text* into lines the way the parser numbers them."""
    return _LINE_BREAK_RE.split(text)


def offset_position(text: str, offset: int) -> Position:
    """Line/column of a character offset, using the parser's line breaks."""
    line, line_start = 0, 0
    for match in _LINE_BREAK_RE.finditer(text, 0, offset):
        line, line_start = line + 1, match.end()
    return Position(line, offset - line_start)


class ParseError(Exception):
    """Raised when text is not a well-formed YAML document.

    Carries the zero-based position reported by the parser, or the document
    start when the parser gave none.
    """

    def __init__(self, message: str, position: Position | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.position = position or Position(0, 0)

    def __str__(self) -> str:
        return (
            f"{self.message} (line {self.position.line + 1}, "
            f"column {self.position.column + 1})"
        )


class YAMLSafetyError(ParseError):
    """Raised when YAML input violates safety constraints.

    Distinct from syntax errors: these indicate oversized or pathologically
    nested documents rather than malformed text.
    """


def _pos(mark: Any) -> Position:
    return Position(mark.line, mark.column)


def _tag(event: Any) -> str | None:
    tag = getattr(event, "tag", None)
    return str(tag) if tag else None


class _TreeAssembler:
    """Recursive descent over one ruamel.yaml event stream."""

    def __init__(
        self,
        events: Iterator[Any],
        lines: list[str],
        max_depth: int,
        max_node_count: int,
    ) -> None:
        self._events = events
        self._lines = lines
        self._max_depth = max_depth
        self._max_node_count = max_node_count
        self._peeked: Any = None
        self._count = 0

    # -- event cursor --------------------------------------------------------

    def _next(self) -> Any:
        if self._peeked is not None:
            event, self._peeked = self._peeked, None
            return event
        return next(self._events)

    def _peek(self) -> Any:
        if self._peeked is None:
            self._peeked = next(self._events)
        return self._peeked

    def _expect(self, event_type: type) -> Any:
        event = self._next()
        if not isinstance(event, event_type):
            raise ParseError(
                f"expected {event_type.__name__}, found {type(event).__name__}",
                _pos(event.start_mark),
            )
        return event

    # -- document ------------------------------------------------------------

    def assemble(self) -> Node:
        self._expect(StreamStartEvent)
        event = self._next()
        if isinstance(event, StreamEndEvent):
            # Empty or comment-only text: an empty mapping at the origin.
            return Node(kind=NodeKind.MAPPING, range=TextRange.empty())
        if not isinstance(event, DocumentStartEvent):
            raise ParseError("expected the start of a document", _pos(event.start_mark))

        root = self._node(self._next(), path="", depth=0)
        self._expect(DocumentEndEvent)

        event = self._next()
        if isinstance(event, DocumentStartEvent):
            raise ParseError(
                "expected a single document in the stream, found another document",
                _pos(event.start_mark),
            )
        return root

    # -- nodes ---------------------------------------------------------------

    def _count_node(self, event: Any, depth: int) -> None:
        self._count += 1
        if self._count > self._max_node_count:
            raise YAMLSafetyError(
                f"YAML document exceeds maximum node count ({self._max_node_count:,})",
                _pos(event.start_mark),
            )
        if depth > self._max_depth:
            raise YAMLSafetyError(
                f"YAML document exceeds maximum nesting depth ({self._max_depth})",
                _pos(event.start_mark),
            )

    def _node(
        self,
        event: Any,
        path: str,
        depth: int,
        key: str | None = None,
        key_range: TextRange | None = None,
    ) -> Node:
        self._count_node(event, depth)

        if isinstance(event, ScalarEvent):
            start, end = _pos(event.start_mark), _pos(event.end_mark)
            if event.style in ("|", ">"):
                end = self._trim_block_scalar(start, end)
            return Node(
                kind=NodeKind.SCALAR,
                range=self._entry_range(start, end, key_range),
                path=path,
                key=key,
                value=event.value,
                depth=depth,
                tag=_tag(event),
                style=event.style,
            )

        if isinstance(event, AliasEvent):
            start, end = _pos(event.start_mark), _pos(event.end_mark)
            return Node(
                kind=NodeKind.SCALAR,
                range=self._entry_range(start, end, key_range),
                path=path,
                key=key,
                value=f"*{event.anchor}",
                depth=depth,
            )

        if isinstance(event, MappingStartEvent):
            children = self._mapping_children(path, depth)
            end_event = self._expect(MappingEndEvent)
            return self._collection(NodeKind.MAPPING, event, end_event, children, path, depth, key, key_range)

        if isinstance(event, SequenceStartEvent):
            children = []
            index = 0
            while not isinstance(self._peek(), SequenceEndEvent):
                children.append(self._node(self._next(), join_path(path, index), depth + 1))
                index += 1
            end_event = self._expect(SequenceEndEvent)
            return self._collection(NodeKind.SEQUENCE, event, end_event, children, path, depth, key, key_range)

        raise ParseError(f"unexpected {type(event).__name__}", _pos(event.start_mark))

    def _mapping_children(self, path: str, depth: int) -> list[Node]:
        children: list[Node] = []
        seen: set[str] = set()
        while not isinstance(self._peek(), MappingEndEvent):
            key_text, key_range = self._key(self._next(), depth)
            if key_text in seen:
                raise ParseError(f"found duplicate key {key_text!r}", key_range.start)
            seen.add(key_text)
            children.append(
                self._node(
                    self._next(),
                    join_path(path, key_text),
                    depth + 1,
                    key=key_text,
                    key_range=key_range,
                )
            )
        return children

    def _key(self, event: Any, depth: int) -> tuple[str, TextRange]:
        if isinstance(event, ScalarEvent):
            return event.value, TextRange(_pos(event.start_mark), _pos(event.end_mark))
        if isinstance(event, AliasEvent):
            return f"*{event.anchor}", TextRange(_pos(event.start_mark), _pos(event.end_mark))
        # Complex key (a collection): keyed by its source text.
        node = self._node(event, path="", depth=depth + 1)
        return self._slice(node.range), node.range

    def _collection(
        self,
        kind: NodeKind,
        start_event: Any,
        end_event: Any,
        children: list[Node],
        path: str,
        depth: int,
        key: str | None,
        key_range: TextRange | None,
    ) -> Node:
        start = _pos(start_event.start_mark)
        flow = bool(start_event.flow_style)
        if flow:
            end = _pos(end_event.end_mark)
        elif children:
            # Block-end marks sit on the next token, possibly lines later.
            end = children[-1].range.end
        else:
            end = start
        return Node(
            kind=kind,
            range=self._entry_range(start, end, key_range),
            path=path,
            key=key,
            children=tuple(children),
            depth=depth,
            tag=_tag(start_event),
            flow=flow,
        )

    # -- ranges --------------------------------------------------------------

    @staticmethod
    def _entry_range(start: Position, end: Position, key_range: TextRange | None) -> TextRange:
        if key_range is None:
            return TextRange(start, end)
        return TextRange(min(key_range.start, start), max(key_range.end, end))

    def _trim_block_scalar(self, start: Position, end: Position) -> Position:
        """Pull a literal/folded scalar's end back to its last non-blank character."""
        line, column = end.line, end.column
        while line > start.line:
            prefix = self._lines[line][:column] if line < len(self._lines) else ""
            if prefix.strip():
                break
            line -= 1
            column = len(self._lines[line])
        prefix = self._lines[line][:column] if line < len(self._lines) else ""
        column = len(prefix.rstrip())
        if line == start.line:
            column = max(column, start.column)
        return Position(line, column)

    def _slice(self, rng: TextRange) -> str:
        if rng.start.line == rng.end.line:
            return self._lines[rng.start.line][rng.start.column : rng.end.column]
        parts = [self._lines[rng.start.line][rng.start.column :]]
        parts.extend(self._lines[rng.start.line + 1 : rng.end.line])
        parts.append(self._lines[rng.end.line][: rng.end.column])
        return "\n".join(parts)


class TreeBuilder:
    """Parses YAML text into a :class:`Node` tree with exact source ranges.

    Walks ruamel.yaml's event stream rather than the constructed data, so
    every mapping entry, sequence item and scalar keeps the line/column of its
    first token and one past its last token. Aliases are kept as ``*name``
    scalars and never expanded.
    """

    def __init__(
        self,
        max_document_size: int = _MAX_DOCUMENT_SIZE,
        max_depth: int = _MAX_DEPTH,
        max_node_count: int = _MAX_NODE_COUNT,
    ) -> None:
        self._max_document_size = max_document_size
        self._max_depth = max_depth
        self._max_node_count = max_node_count

    # -- safety checks -------------------------------------------------------

    def _check_size(self, content: str) -> None:
        if len(content) > self._max_document_size:
            raise YAMLSafetyError(
                f"YAML document exceeds maximum size "
                f"({len(content):,} chars > {self._max_document_size:,} limit)"
            )

    # -- public building API -------------------------------------------------

    def build(self, text: str) -> Node:
        """Parse *text* and return the root node.

        Raises :class:`ParseError` on malformed YAML; no partial tree is
        returned.
        """
        self._check_size(text)
        lines = split_lines(text)
        # A fresh YAML instance per call: its reader/parser state is not
        # safe to share between threads.
        events = YAML().parse(text)
        assembler = _TreeAssembler(events, lines, self._max_depth, self._max_node_count)
        try:
            return assembler.assemble()
        except ParseError:
            raise
        except MarkedYAMLError as exc:
            raise _from_marked_error(exc) from exc
        except ReaderError as exc:
            raise _from_reader_error(exc, text) from exc
        except YAMLError as exc:
            raise ParseError(str(exc)) from exc
        except StopIteration as exc:
            raise ParseError("unexpected end of stream") from exc
        finally:
            events.close()

    def build_file(self, path: Path) -> Node:
        """Parse a YAML file from disk."""
        with path.open("r", encoding="utf-8") as handle:
            content = handle.read()
        return self.build(content)


def _from_reader_error(exc: ReaderError, text: str) -> ParseError:
    if isinstance(exc.character, int):
        message = f"unacceptable character #x{exc.character:04x}: {exc.reason}"
    else:
        message = str(exc.reason)
    return ParseError(message, offset_position(text, exc.position))


def _from_marked_error(exc: MarkedYAMLError) -> ParseError:
    mark = exc.problem_mark or exc.context_mark
    parts = [p for p in (exc.context, exc.problem) if p]
    message = ", ".join(parts) if parts else str(exc)
    return ParseError(message, _pos(mark) if mark is not None else None)
