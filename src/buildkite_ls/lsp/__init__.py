"""Language Server Protocol front end."""

from buildkite_ls.lsp.server import PipelineLanguageServer, create_server, main

__all__ = ["PipelineLanguageServer", "create_server", "main"]
