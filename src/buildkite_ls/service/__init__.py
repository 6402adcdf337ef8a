"""Document lifecycle and editor-facing operations."""

from buildkite_ls.service.document_store import (
    ContentChange,
    Document,
    DocumentNotFoundError,
    DocumentStore,
)
from buildkite_ls.service.locks import ReadWriteLock
from buildkite_ls.service.workspace import HoverResult, PipelineWorkspace

__all__ = [
    "ContentChange",
    "Document",
    "DocumentNotFoundError",
    "DocumentStore",
    "HoverResult",
    "PipelineWorkspace",
    "ReadWriteLock",
]
