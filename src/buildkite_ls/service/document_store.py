"""Open-document store: immutable parsed snapshots keyed by URI."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field, replace

from buildkite_ls.models.tree import Node, Position, TextRange
from buildkite_ls.parser.index import PositionIndex
from buildkite_ls.parser.loader import ParseError, TreeBuilder
from buildkite_ls.service.locks import ReadWriteLock

logger = logging.getLogger(__name__)

# Line breaks as editors count them when addressing incremental edits.
_EDITOR_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


class DocumentNotFoundError(KeyError):
    """Raised when a URI has not been opened (or was closed)."""


@dataclass(frozen=True)
class ContentChange:
    """One edit: replace *range* with *text*, or the whole document if no range."""

    text: str
    range: TextRange | None = None


def _offset(text: str, line_starts: list[int], pos: Position) -> int:
    if pos.line >= len(line_starts):
        return len(text)
    start = line_starts[pos.line]
    end = line_starts[pos.line + 1] if pos.line + 1 < len(line_starts) else len(text)
    body = text[start:end].rstrip("\r\n")
    return start + min(pos.column, len(body))


def apply_changes(text: str, changes: str | Sequence[ContentChange]) -> str:
    """Apply full-text or ranged edits in order and return the new text."""
    if isinstance(changes, str):
        return changes
    for change in changes:
        if change.range is None:
            text = change.text
            continue
        line_starts = [0] + [m.end() for m in _EDITOR_LINE_BREAK_RE.finditer(text)]
        start = _offset(text, line_starts, change.range.start)
        end = _offset(text, line_starts, change.range.end)
        text = text[:start] + change.text + text[max(start, end) :]
    return text


@dataclass(frozen=True)
class Document:
    """Snapshot of one open pipeline file.

    ``tree`` and ``index`` always belong to the most recent text that parsed
    successfully; a failed parse records ``parse_error`` and keeps them, so
    position queries keep answering against the last good state.
    """

    uri: str
    text: str
    version: int
    tree: Node | None = None
    index: PositionIndex | None = None
    parse_error: ParseError | None = None

    @classmethod
    def open(cls, uri: str, text: str, version: int, builder: TreeBuilder) -> Document:
        return cls(uri=uri, text="", version=version).parse(text, version, builder)

    @property
    def is_stale(self) -> bool:
        """True when the tree (if any) does not reflect the current text."""
        return self.parse_error is not None

    def parse(self, text: str, version: int, builder: TreeBuilder) -> Document:
        """Return a new snapshot for *text*; the receiver is left untouched."""
        try:
            tree = builder.build(text)
        except ParseError as exc:
            logger.debug("Parse of %s v%d failed: %s", self.uri, version, exc)
            return replace(self, text=text, version=version, parse_error=exc)
        return Document(
            uri=self.uri,
            text=text,
            version=version,
            tree=tree,
            index=PositionIndex(tree),
        )


@dataclass
class _EditLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class DocumentStore:
    """Thread-safe ``uri -> Document`` map.

    Readers share a reader/writer lock; writers hold it only to swap a
    finished snapshot in. Parsing happens outside that lock, serialised per
    URI so edits to one document install in the order they were applied.
    """

    def __init__(self, builder: TreeBuilder | None = None) -> None:
        self._builder = builder if builder is not None else TreeBuilder()
        self._lock = ReadWriteLock()
        self._documents: dict[str, Document] = {}
        self._edit_locks: dict[str, _EditLock] = {}
        self._edit_locks_guard = threading.Lock()

    @property
    def builder(self) -> TreeBuilder:
        return self._builder

    @contextmanager
    def _editing(self, uri: str) -> Iterator[None]:
        """Serialise edits to *uri*; the lock is dropped once nobody uses it."""
        with self._edit_locks_guard:
            entry = self._edit_locks.get(uri)
            if entry is None:
                entry = self._edit_locks[uri] = _EditLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._edit_locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._edit_locks[uri]

    # -- writers -------------------------------------------------------------

    def open(self, uri: str, text: str, version: int = 0) -> Document:
        """Parse *text* and install it as the current state of *uri*."""
        with self._editing(uri):
            document = Document.open(uri, text, version, self._builder)
            with self._lock.write():
                self._documents[uri] = document
        logger.debug("Opened %s v%d", uri, version)
        return document

    def update(
        self,
        uri: str,
        changes: str | Sequence[ContentChange],
        version: int | None = None,
    ) -> Document:
        """Apply an edit and re-parse.

        An edit older than the stored version is discarded and the stored
        document returned. Raises :class:`DocumentNotFoundError` for unknown
        URIs.
        """
        with self._editing(uri):
            current = self.get(uri)
            if version is not None and version < current.version:
                logger.debug(
                    "Discarding stale edit of %s (v%d < v%d)", uri, version, current.version
                )
                return current
            text = apply_changes(current.text, changes)
            new_version = version if version is not None else current.version + 1
            document = current.parse(text, new_version, self._builder)
            with self._lock.write():
                self._documents[uri] = document
        return document

    def save(self, uri: str, text: str | None = None) -> Document:
        """Re-parse on save, with the saved text when the client sends it."""
        with self._editing(uri):
            current = self.get(uri)
            document = current.parse(
                current.text if text is None else text, current.version, self._builder
            )
            with self._lock.write():
                self._documents[uri] = document
        return document

    def close(self, uri: str) -> None:
        with self._editing(uri), self._lock.write():
            self._documents.pop(uri, None)
        logger.debug("Closed %s", uri)

    # -- readers -------------------------------------------------------------

    def get(self, uri: str) -> Document:
        """Return the current snapshot for *uri*.

        Raises :class:`DocumentNotFoundError` if it is not open.
        """
        with self._lock.read():
            document = self._documents.get(uri)
        if document is None:
            raise DocumentNotFoundError(f"Document '{uri}' is not open")
        return document

    def find(self, uri: str) -> Document | None:
        with self._lock.read():
            return self._documents.get(uri)

    def uris(self) -> list[str]:
        with self._lock.read():
            return list(self._documents)

    def __contains__(self, uri: object) -> bool:
        with self._lock.read():
            return uri in self._documents

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._documents)
