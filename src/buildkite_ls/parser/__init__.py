"""YAML parsing with exact source ranges for Buildkite pipelines."""

from buildkite_ls.parser.index import PositionIndex
from buildkite_ls.parser.loader import ParseError, TreeBuilder, YAMLSafetyError
from buildkite_ls.parser.references import find_step, referenced_key
from buildkite_ls.parser.validator import PipelineValidator, ValidationRules

__all__ = [
    "ParseError",
    "PipelineValidator",
    "PositionIndex",
    "TreeBuilder",
    "ValidationRules",
    "YAMLSafetyError",
    "find_step",
    "referenced_key",
]
