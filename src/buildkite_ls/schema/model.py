"""Path-keyed documentation and constraints derived from a pipeline JSON-Schema."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from buildkite_ls.models.tree import NodeKind, join_path, split_path

ITEMS_SEGMENT = "items"
STEPS_KEY = "steps"

# Step-type keys Buildkite has always accepted; schema-derived keys extend this.
DEFAULT_STEP_KEYS: tuple[str, ...] = (
    "command",
    "commands",
    "wait",
    "block",
    "input",
    "trigger",
    "group",
)

# Nesting of properties/items; $ref and combinator hops do not count.
_MAX_SCHEMA_DEPTH = 128

_KIND_BY_TYPE = {
    "object": NodeKind.MAPPING,
    "array": NodeKind.SEQUENCE,
    "string": NodeKind.SCALAR,
    "integer": NodeKind.SCALAR,
    "number": NodeKind.SCALAR,
    "boolean": NodeKind.SCALAR,
    "null": NodeKind.SCALAR,
}


class SchemaError(Exception):
    """Base class for schema loading failures."""


class SchemaParseError(SchemaError):
    """Raised when the schema document is not usable JSON-Schema."""


def schema_path(path: str) -> str:
    """Translate a document path to schema addressing (indices become ``items``)."""
    return "/".join(ITEMS_SEGMENT if s.isdigit() else s for s in split_path(path))


@dataclass(frozen=True)
class SchemaConstraint:
    """Structural rules recorded for one schema path."""

    kind: NodeKind | None = None
    required: tuple[str, ...] = ()
    properties: tuple[str, ...] = ()
    alternatives: tuple[str, ...] = ()
    min_items: int | None = None
    enum: tuple[str, ...] = ()


@dataclass
class _Draft:
    kind: NodeKind | None = None
    required: list[str] = field(default_factory=list)
    properties: list[str] = field(default_factory=list)
    alternatives: list[str] = field(default_factory=list)
    min_items: int | None = None
    enum: list[str] = field(default_factory=list)

    def freeze(self) -> SchemaConstraint:
        return SchemaConstraint(
            kind=self.kind,
            required=tuple(self.required),
            properties=tuple(self.properties),
            alternatives=tuple(self.alternatives),
            min_items=self.min_items,
            enum=tuple(self.enum),
        )


def _add_unique(target: list[str], values: Any) -> None:
    for value in values:
        if isinstance(value, str) and value not in target:
            target.append(value)


class _SchemaWalker:
    """Walks ``properties``/``items`` and follows local refs and alternatives.

    The first description recorded for a path wins; a schema's own
    description and direct properties are visited before its ``$ref`` and
    ``allOf``/``anyOf``/``oneOf`` branches. Refs already being expanded on the
    current chain are not followed again.
    """

    def __init__(self, document: Mapping[str, Any]) -> None:
        self._document = document
        self.documentation: dict[str, str] = {}
        self.drafts: dict[str, _Draft] = {}

    def resolve(self, ref: str) -> Any:
        """Resolve a local JSON pointer (``#/definitions/x``); remote refs give ``None``."""
        if not ref.startswith("#"):
            return None
        target: Any = self._document
        for token in ref[1:].split("/"):
            if not token:
                continue
            token = token.replace("~1", "/").replace("~0", "~")
            if not isinstance(target, Mapping) or token not in target:
                return None
            target = target[token]
        return target

    def walk(
        self,
        schema: Any,
        path: str,
        refs: frozenset[str] = frozenset(),
        depth: int = 0,
        conditional: bool = False,
    ) -> None:
        if not isinstance(schema, Mapping):
            return
        if depth > _MAX_SCHEMA_DEPTH:
            raise SchemaParseError(
                f"Schema nesting exceeds maximum depth ({_MAX_SCHEMA_DEPTH}) at '{path}'"
            )
        draft = self.drafts.setdefault(path, _Draft())

        description = schema.get("description")
        if isinstance(description, str):
            self.documentation.setdefault(path, description)

        schema_type = schema.get("type")
        if isinstance(schema_type, str) and draft.kind is None and not conditional:
            draft.kind = _KIND_BY_TYPE.get(schema_type)
        if not conditional:
            required = schema.get("required")
            if isinstance(required, list):
                _add_unique(draft.required, required)
            min_items = schema.get("minItems")
            if isinstance(min_items, int) and draft.min_items is None:
                draft.min_items = min_items
        enum = schema.get("enum")
        if isinstance(enum, list):
            _add_unique(draft.enum, [_enum_text(v) for v in enum])

        properties = schema.get("properties")
        if isinstance(properties, Mapping):
            for name, sub in properties.items():
                _add_unique(draft.properties, [name])
                self.walk(sub, join_path(path, name), refs, depth + 1)

        items = schema.get("items")
        item_schemas = items if isinstance(items, list) else [items]
        for sub in item_schemas:
            self.walk(sub, join_path(path, ITEMS_SEGMENT), refs, depth + 1)

        ref = schema.get("$ref")
        if isinstance(ref, str) and ref not in refs:
            self.walk(self.resolve(ref), path, refs | {ref}, depth, conditional)

        for sub in _as_list(schema.get("allOf")):
            self.walk(sub, path, refs, depth, conditional)

        for combinator in ("anyOf", "oneOf"):
            alternatives = _as_list(schema.get(combinator))
            for sub in alternatives:
                self.walk(sub, path, refs, depth, conditional=True)
                _add_unique(draft.alternatives, self._discriminators(sub, refs))

    def _discriminators(self, schema: Any, refs: frozenset[str]) -> list[str]:
        """First required key of an object alternative, or the values of a string enum."""
        seen = set(refs)
        while isinstance(schema, Mapping) and isinstance(schema.get("$ref"), str):
            ref = schema["$ref"]
            if ref in seen:
                return []
            seen.add(ref)
            schema = self.resolve(ref)
        if not isinstance(schema, Mapping):
            return []
        required = schema.get("required")
        if isinstance(required, list) and required and isinstance(required[0], str):
            return [required[0]]
        if schema.get("type") == "string" and isinstance(schema.get("enum"), list):
            return [v for v in schema["enum"] if isinstance(v, str)]
        return []


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _enum_text(value: Any) -> str:
    """Render a JSON enum member the way it would be written as a YAML scalar."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class SchemaModel:
    """Documentation and structural constraints of a schema, keyed by path.

    Paths mirror document node paths except that array slots use the literal
    segment ``items``; lookups translate numeric segments automatically.
    Immutable after construction and safe to share between threads.
    """

    def __init__(
        self,
        documentation: Mapping[str, str],
        constraints: Mapping[str, SchemaConstraint],
        definitions: Mapping[str, Any] | None = None,
        title: str | None = None,
        default_step_keys: tuple[str, ...] = DEFAULT_STEP_KEYS,
    ) -> None:
        self._documentation = MappingProxyType(dict(documentation))
        self._constraints = MappingProxyType(dict(constraints))
        self._definitions = MappingProxyType(dict(definitions or {}))
        self._title = title
        derived = self._constraints.get(join_path(STEPS_KEY, ITEMS_SEGMENT))
        keys = list(default_step_keys)
        _add_unique(keys, derived.alternatives if derived else ())
        self._step_keys = tuple(keys)

    @classmethod
    def from_schema_document(
        cls,
        schema: Mapping[str, Any] | str | bytes,
        default_step_keys: tuple[str, ...] = DEFAULT_STEP_KEYS,
    ) -> SchemaModel:
        """Build a model from a parsed schema or its JSON text.

        Raises :class:`SchemaParseError` for invalid JSON, a non-object root or
        nesting deeper than the walker follows.
        """
        if isinstance(schema, (str, bytes)):
            try:
                schema = json.loads(schema)
            except json.JSONDecodeError as exc:
                raise SchemaParseError(f"Schema is not valid JSON: {exc}") from exc
        if not isinstance(schema, Mapping):
            raise SchemaParseError(
                f"Schema root must be a JSON object, got {type(schema).__name__}"
            )

        walker = _SchemaWalker(schema)
        walker.walk(schema, "")

        definitions: dict[str, Any] = {}
        for table in ("definitions", "$defs"):
            if isinstance(schema.get(table), Mapping):
                definitions.update(schema[table])

        title = schema.get("title")
        return cls(
            documentation=walker.documentation,
            constraints={p: d.freeze() for p, d in walker.drafts.items()},
            definitions=definitions,
            title=title if isinstance(title, str) else None,
            default_step_keys=default_step_keys,
        )

    # -- read-only views -----------------------------------------------------

    @property
    def documentation(self) -> Mapping[str, str]:
        return self._documentation

    @property
    def constraints(self) -> Mapping[str, SchemaConstraint]:
        return self._constraints

    @property
    def definitions(self) -> Mapping[str, Any]:
        return self._definitions

    @property
    def title(self) -> str | None:
        return self._title

    @property
    def step_keys(self) -> tuple[str, ...]:
        """Step-type discriminator keys: defaults plus schema-derived alternatives."""
        return self._step_keys

    # -- lookups -------------------------------------------------------------

    def get_documentation(self, path: str) -> str | None:
        return self._documentation.get(schema_path(path))

    def get_constraint(self, path: str) -> SchemaConstraint | None:
        return self._constraints.get(schema_path(path))

    def get_properties_at(self, path: str) -> list[str]:
        """Candidate child keys for completion at *path*.

        A path ending in ``steps`` yields the step-type keys; anything else
        yields the property names the schema declares there.
        """
        segments = split_path(path)
        if segments and segments[-1] == STEPS_KEY:
            return list(self._step_keys)
        constraint = self.get_constraint(path)
        return list(constraint.properties) if constraint else []
