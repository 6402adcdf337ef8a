"""Pipeline JSON-Schema introspection: documentation and constraints by path."""

from buildkite_ls.schema.loader import SchemaFetchError, SchemaLoader
from buildkite_ls.schema.model import (
    DEFAULT_STEP_KEYS,
    SchemaConstraint,
    SchemaError,
    SchemaModel,
    SchemaParseError,
    schema_path,
)

__all__ = [
    "DEFAULT_STEP_KEYS",
    "SchemaConstraint",
    "SchemaError",
    "SchemaFetchError",
    "SchemaLoader",
    "SchemaModel",
    "SchemaParseError",
    "schema_path",
]
