"""Structured diagnostics with source ranges."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel

from buildkite_ls.models.tree import TextRange

DIAGNOSTIC_SOURCE = "buildkite-ls"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"
    HINT = "hint"


class Diagnostic(BaseModel):
    """A structural problem in a pipeline document, anchored to a node range."""

    code: str
    message: str
    range: TextRange
    severity: Severity = Severity.ERROR
    path: str | None = None
    source: str = DIAGNOSTIC_SOURCE

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR
