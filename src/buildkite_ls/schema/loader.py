"""Fetch the pipeline JSON-Schema over HTTP or read it from disk."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from buildkite_ls.schema.model import SchemaError, SchemaModel, SchemaParseError
from buildkite_ls.settings import Settings

logger = logging.getLogger(__name__)

_HEADERS = {"User-Agent": "buildkite-ls/1.0", "Accept": "application/json"}


class SchemaFetchError(SchemaError):
    """Raised when the schema cannot be downloaded or read."""


class SchemaLoader:
    """Builds a :class:`SchemaModel` from a URL, a file, or a JSON string.

    An ``httpx.Client`` may be injected (tests pass one with a mock
    transport); otherwise a short-lived client is created per fetch.
    """

    def __init__(self, timeout: float = 10.0, client: httpx.Client | None = None) -> None:
        self._timeout = timeout
        self._client = client

    def fetch(self, url: str) -> SchemaModel:
        """Download and parse the schema at *url*."""
        logger.info("Fetching pipeline schema from %s", url)
        try:
            if self._client is not None:
                resp = self._client.get(url, timeout=self._timeout, headers=_HEADERS)
            else:
                with httpx.Client(timeout=self._timeout, headers=_HEADERS, follow_redirects=True) as client:
                    resp = client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SchemaFetchError(
                f"Schema request to {url} failed: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SchemaFetchError(f"Schema request to {url} failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise SchemaFetchError(f"Invalid schema URL {url!r}: {exc}") from exc
        return self.load_string(resp.text)

    def load_file(self, path: Path) -> SchemaModel:
        """Read and parse a schema file from disk."""
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise SchemaParseError(f"Schema file {path} is not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise SchemaFetchError(f"Cannot read schema file {path}: {exc}") from exc
        return self.load_string(content)

    def load_string(self, content: str) -> SchemaModel:
        model = SchemaModel.from_schema_document(content)
        logger.debug(
            "Loaded schema %r: %d documented paths, %d step types",
            model.title,
            len(model.documentation),
            len(model.step_keys),
        )
        return model

    def load(self, settings: Settings) -> SchemaModel | None:
        """Load the schema configured in *settings*.

        A local ``schema_path`` wins over ``schema_url``. Returns ``None``
        when fetching is disabled and no path is set. Raises
        :class:`SchemaError` subclasses on failure.
        """
        if settings.schema_path is not None:
            return self.load_file(settings.schema_path)
        if not settings.fetch_schema:
            logger.info("Schema fetching disabled; running without a schema")
            return None
        return self.fetch(settings.schema_url)
