"""Shared settings loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SCHEMA_URL = (
    "https://raw.githubusercontent.com/buildkite/pipeline-schema/refs/heads/main/schema.json"
)


class Settings(BaseSettings):
    """Configuration for the Buildkite pipeline language server.

    Values are read from environment variables and from a ``.env`` file
    in the working directory.  See ``.env.example`` for all options.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shared
    log_level: str = "INFO"

    # Schema
    schema_url: str = DEFAULT_SCHEMA_URL
    schema_path: Path | None = None  # local schema file; takes precedence over schema_url
    schema_timeout_seconds: float = 10.0
    fetch_schema: bool = True  # set false to run offline without documentation

    # Parser safety limits
    max_document_size: int = 5_000_000  # characters
    max_depth: int = 64
    max_node_count: int = 100_000

    # Language server transport
    lsp_transport: Literal["stdio", "tcp"] = "stdio"
    lsp_host: str = "127.0.0.1"
    lsp_port: int = 2087
