"""pygls language server exposing the pipeline workspace to editors.

Run via::

    buildkite-ls                        # reads .env (default: stdio)
    LSP_TRANSPORT=tcp buildkite-ls      # TCP on 127.0.0.1:2087

Positions arrive in the client's encoding (UTF-16 unless negotiated
otherwise) and are converted to code-point columns with the document's
``PositionCodec`` before reaching the workspace. Settings are loaded from
environment variables and ``.env`` file; see ``.env.example``.
"""

from __future__ import annotations

import logging

from lsprotocol import types as lsp
from pygls.server import LanguageServer

from buildkite_ls import __version__
from buildkite_ls.models.errors import Diagnostic, Severity
from buildkite_ls.models.tree import Position, TextRange
from buildkite_ls.service.workspace import PipelineWorkspace
from buildkite_ls.settings import Settings

logger = logging.getLogger("buildkite_ls.lsp")

_SEVERITY = {
    Severity.ERROR: lsp.DiagnosticSeverity.Error,
    Severity.WARNING: lsp.DiagnosticSeverity.Warning,
    Severity.INFORMATION: lsp.DiagnosticSeverity.Information,
    Severity.HINT: lsp.DiagnosticSeverity.Hint,
}


class PipelineLanguageServer(LanguageServer):
    """Language server holding one :class:`PipelineWorkspace`.

    ``workspace`` is pygls' own text-document mirror; the pipeline facade
    lives in ``pipelines``.
    """

    def __init__(self, settings: Settings, pipelines: PipelineWorkspace) -> None:
        super().__init__(name="buildkite-ls", version=__version__)
        self.settings = settings
        self.pipelines = pipelines
        self.schema_warning_shown = False

    # -- conversions ---------------------------------------------------------

    def to_position(self, uri: str, position: lsp.Position) -> Position:
        document = self.workspace.get_text_document(uri)
        converted = document.position_codec.position_from_client_units(document.lines, position)
        return Position(converted.line, converted.character)

    def to_lsp_range(self, uri: str, rng: TextRange) -> lsp.Range:
        document = self.workspace.get_text_document(uri)
        return document.position_codec.range_to_client_units(
            document.lines,
            lsp.Range(
                start=lsp.Position(line=rng.start.line, character=rng.start.column),
                end=lsp.Position(line=rng.end.line, character=rng.end.column),
            ),
        )

    def to_lsp_diagnostic(self, uri: str, diagnostic: Diagnostic) -> lsp.Diagnostic:
        return lsp.Diagnostic(
            range=self.to_lsp_range(uri, diagnostic.range),
            message=diagnostic.message,
            severity=_SEVERITY[diagnostic.severity],
            code=diagnostic.code,
            source=diagnostic.source,
        )

    def publish(self, uri: str, diagnostics: list[Diagnostic]) -> None:
        self.publish_diagnostics(uri, [self.to_lsp_diagnostic(uri, d) for d in diagnostics])

    def source(self, uri: str) -> str:
        return self.workspace.get_text_document(uri).source


def _load_schema(ls: PipelineLanguageServer) -> None:
    ls.pipelines.load_schema(ls.settings)
    error = ls.pipelines.schema_error
    if error is not None and not ls.schema_warning_shown:
        ls.schema_warning_shown = True
        ls.show_message(
            f"Buildkite pipeline schema unavailable, hover and completion are disabled: {error}",
            lsp.MessageType.Warning,
        )
    for uri in ls.pipelines.store.uris():
        ls.publish(uri, ls.pipelines.diagnostics(uri))


def create_server(
    settings: Settings | None = None, pipelines: PipelineWorkspace | None = None
) -> PipelineLanguageServer:
    """Build a server with its handlers registered; the caller starts it."""
    settings = settings if settings is not None else Settings()
    if pipelines is None:
        pipelines = PipelineWorkspace.from_settings(settings)
    server = PipelineLanguageServer(settings, pipelines)

    @server.feature(lsp.INITIALIZED)
    @server.thread()
    def initialized(ls: PipelineLanguageServer, params: lsp.InitializedParams) -> None:
        try:
            _load_schema(ls)
        except Exception:
            logger.exception("Schema initialisation failed")

    @server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
    def did_open(ls: PipelineLanguageServer, params: lsp.DidOpenTextDocumentParams) -> None:
        item = params.text_document
        try:
            ls.publish(item.uri, ls.pipelines.on_open(item.uri, item.text, item.version))
        except Exception:
            logger.exception("didOpen failed for %s", item.uri)

    @server.feature(lsp.TEXT_DOCUMENT_DID_CHANGE)
    @server.thread()
    def did_change(ls: PipelineLanguageServer, params: lsp.DidChangeTextDocumentParams) -> None:
        # pygls has already applied the edits to its own mirror.
        uri = params.text_document.uri
        try:
            diagnostics = ls.pipelines.on_change(uri, ls.source(uri), params.text_document.version)
            ls.publish(uri, diagnostics)
        except Exception:
            logger.exception("didChange failed for %s", uri)

    @server.feature(lsp.TEXT_DOCUMENT_DID_SAVE)
    @server.thread()
    def did_save(ls: PipelineLanguageServer, params: lsp.DidSaveTextDocumentParams) -> None:
        uri = params.text_document.uri
        try:
            ls.publish(uri, ls.pipelines.on_save(uri, params.text))
        except Exception:
            logger.exception("didSave failed for %s", uri)

    @server.feature(lsp.TEXT_DOCUMENT_DID_CLOSE)
    def did_close(ls: PipelineLanguageServer, params: lsp.DidCloseTextDocumentParams) -> None:
        uri = params.text_document.uri
        ls.pipelines.on_close(uri)
        ls.publish_diagnostics(uri, [])

    @server.feature(lsp.TEXT_DOCUMENT_HOVER)
    def hover(ls: PipelineLanguageServer, params: lsp.HoverParams) -> lsp.Hover | None:
        uri = params.text_document.uri
        try:
            pos = ls.to_position(uri, params.position)
            result = ls.pipelines.hover(uri, pos.line, pos.column)
            if result is None:
                return None
            return lsp.Hover(
                contents=lsp.MarkupContent(kind=lsp.MarkupKind.Markdown, value=result.contents),
                range=ls.to_lsp_range(uri, result.range),
            )
        except Exception:
            logger.exception("hover failed for %s", uri)
            return None

    @server.feature(lsp.TEXT_DOCUMENT_DEFINITION)
    def definition(ls: PipelineLanguageServer, params: lsp.DefinitionParams) -> lsp.Location | None:
        uri = params.text_document.uri
        try:
            pos = ls.to_position(uri, params.position)
            step = ls.pipelines.definition(uri, pos.line, pos.column)
            if step is None:
                return None
            return lsp.Location(uri=uri, range=ls.to_lsp_range(uri, step.range))
        except Exception:
            logger.exception("definition failed for %s", uri)
            return None

    @server.feature(
        lsp.TEXT_DOCUMENT_COMPLETION,
        lsp.CompletionOptions(trigger_characters=[" ", "-"]),
    )
    def completion(ls: PipelineLanguageServer, params: lsp.CompletionParams) -> lsp.CompletionList:
        uri = params.text_document.uri
        items: list[lsp.CompletionItem] = []
        try:
            pos = ls.to_position(uri, params.position)
            for key in ls.pipelines.completion(uri, pos.line, pos.column):
                items.append(
                    lsp.CompletionItem(
                        label=key,
                        kind=lsp.CompletionItemKind.Property,
                        insert_text=f"{key}: ",
                    )
                )
        except Exception:
            logger.exception("completion failed for %s", uri)
        return lsp.CompletionList(is_incomplete=False, items=items)

    return server


def main() -> None:
    """Run the language server using settings from environment / .env file."""
    settings = Settings()

    # stdout carries the protocol in stdio mode; basicConfig logs to stderr.
    logging.basicConfig(level=settings.log_level.upper())
    logger.info(
        "buildkite-ls v%s starting (transport=%s)",
        __version__,
        settings.lsp_transport,
    )

    server = create_server(settings)
    if settings.lsp_transport == "tcp":
        server.start_tcp(settings.lsp_host, settings.lsp_port)
    else:
        server.start_io()


if __name__ == "__main__":
    main()
