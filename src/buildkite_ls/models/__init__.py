"""Document tree and diagnostic models for the Buildkite language server."""

from buildkite_ls.models.errors import Diagnostic, Severity
from buildkite_ls.models.tree import Node, NodeKind, Position, TextRange, join_path, split_path

__all__ = [
    "Diagnostic",
    "Node",
    "NodeKind",
    "Position",
    "Severity",
    "TextRange",
    "join_path",
    "split_path",
]
