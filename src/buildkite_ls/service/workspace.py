"""Editor-facing operations over the open pipeline documents."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from buildkite_ls.models.errors import Diagnostic
from buildkite_ls.models.tree import Node, Position, TextRange
from buildkite_ls.parser.loader import ParseError, TreeBuilder, split_lines
from buildkite_ls.parser.references import find_step, referenced_key
from buildkite_ls.parser.validator import PipelineValidator, ValidationRules
from buildkite_ls.schema.loader import SchemaLoader
from buildkite_ls.schema.model import SchemaError, SchemaModel
from buildkite_ls.service.document_store import ContentChange, Document, DocumentStore
from buildkite_ls.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoverResult:
    """Documentation for the node under the cursor."""

    contents: str
    range: TextRange
    path: str


class PipelineWorkspace:
    """Document lifecycle, hover, completion and diagnostics in one place.

    Collaborators are injected; nothing here is global, so each test (or
    language-server instance) works on its own store and schema. Without a
    schema, hover and completion return nothing and only parse errors are
    reported.
    """

    def __init__(
        self,
        store: DocumentStore | None = None,
        schema: SchemaModel | None = None,
        rules: ValidationRules | None = None,
    ) -> None:
        self._store = store if store is not None else DocumentStore()
        self._schema = schema
        self._schema_error: SchemaError | None = None
        self._validator = PipelineValidator(rules)

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineWorkspace:
        builder = TreeBuilder(
            max_document_size=settings.max_document_size,
            max_depth=settings.max_depth,
            max_node_count=settings.max_node_count,
        )
        return cls(store=DocumentStore(builder))

    @property
    def store(self) -> DocumentStore:
        return self._store

    # -- schema --------------------------------------------------------------

    @property
    def schema(self) -> SchemaModel | None:
        return self._schema

    @property
    def schema_error(self) -> SchemaError | None:
        """The failure from the last :meth:`load_schema`, if it failed."""
        return self._schema_error

    def set_schema(self, schema: SchemaModel | None) -> None:
        self._schema = schema

    def load_schema(
        self, settings: Settings, loader: SchemaLoader | None = None
    ) -> SchemaModel | None:
        """Load the configured schema; on failure log it and keep running without one."""
        if loader is None:
            loader = SchemaLoader(timeout=settings.schema_timeout_seconds)
        try:
            schema = loader.load(settings)
        except SchemaError as exc:
            logger.warning("Pipeline schema unavailable, continuing without it: %s", exc)
            self._schema_error = exc
            return None
        self._schema_error = None
        if schema is not None:
            self.set_schema(schema)
            logger.info("Pipeline schema loaded (%d documented paths)", len(schema.documentation))
        return schema

    # -- document lifecycle --------------------------------------------------

    def on_open(self, uri: str, text: str, version: int = 0) -> list[Diagnostic]:
        return self._diagnose(self._store.open(uri, text, version))

    def on_change(
        self,
        uri: str,
        changes: str | Sequence[ContentChange],
        version: int | None = None,
    ) -> list[Diagnostic]:
        return self._diagnose(self._store.update(uri, changes, version))

    def on_save(self, uri: str, text: str | None = None) -> list[Diagnostic]:
        return self._diagnose(self._store.save(uri, text))

    def on_close(self, uri: str) -> None:
        self._store.close(uri)

    # -- queries -------------------------------------------------------------

    def hover(self, uri: str, line: int, column: int) -> HoverResult | None:
        """Schema documentation for the most specific node at the cursor."""
        document = self._store.find(uri)
        schema = self._schema
        if document is None or document.index is None or schema is None:
            return None
        node = document.index.node_at(line, column)
        if node is None:
            return None
        contents = schema.get_documentation(node.path)
        if contents is None:
            return None
        return HoverResult(contents=contents, range=node.range, path=node.path)

    def completion(self, uri: str, line: int, column: int) -> list[str]:
        """Keys the schema allows at the cursor that the mapping does not have yet."""
        document = self._store.find(uri)
        schema = self._schema
        if document is None or schema is None:
            return []

        index = document.index
        chain = index.ancestor_chain(line, column) if index else []
        if not chain:
            # Blank line between keys: the mapping the new key would join.
            container = (index.enclosing(line, column) if index else None) or document.tree
        elif chain[-1].is_scalar:
            # Cursor on a key/value pair: complete its siblings.
            container = chain[-2] if len(chain) > 1 else document.tree
        else:
            container = chain[-1]

        path = container.path if container is not None else ""
        present = set(container.keys()) if container is not None and container.is_mapping else set()
        return [key for key in schema.get_properties_at(path) if key not in present]

    def definition(self, uri: str, line: int, column: int) -> Node | None:
        """The step a ``depends_on`` entry at the cursor refers to."""
        document = self._store.find(uri)
        if document is None or document.index is None:
            return None
        node = document.index.node_at(line, column)
        key = referenced_key(node) if node is not None else None
        if key is None:
            return None
        return find_step(document.index.root, key, self._validator.rules.steps_key)

    def diagnostics(self, uri: str) -> list[Diagnostic]:
        document = self._store.find(uri)
        if document is None:
            return []
        return self._diagnose(document)

    # -- internal ------------------------------------------------------------

    def _diagnose(self, document: Document) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        if document.parse_error is not None:
            diagnostics.append(_parse_error_diagnostic(document.text, document.parse_error))
        schema = self._schema
        if document.tree is not None and schema is not None:
            diagnostics.extend(self._validator.validate(document.tree, schema))
        return diagnostics


def _parse_error_diagnostic(text: str, error: ParseError) -> Diagnostic:
    """Span from the error position to the end of its line."""
    lines = split_lines(text)
    start = error.position
    if start.line < len(lines):
        end = Position(start.line, max(len(lines[start.line]), start.column))
    else:
        end = start
    return Diagnostic(
        code="yaml-parse-error",
        message=f"YAML parse error: {error.message}",
        range=TextRange(start, end),
    )
