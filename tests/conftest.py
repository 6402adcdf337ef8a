"""Shared test fixtures for the Buildkite language server."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildkite_ls.models.tree import Node
from buildkite_ls.parser.index import PositionIndex
from buildkite_ls.parser.loader import TreeBuilder
from buildkite_ls.parser.validator import PipelineValidator
from buildkite_ls.schema.model import SchemaModel
from buildkite_ls.service.document_store import DocumentStore
from buildkite_ls.service.workspace import PipelineWorkspace

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SCHEMA_PATH = FIXTURES_DIR / "pipeline.schema.json"

PIPELINE_URI = "file:///repo/.buildkite/pipeline.yml"


@pytest.fixture
def builder() -> TreeBuilder:
    return TreeBuilder()


@pytest.fixture
def validator() -> PipelineValidator:
    return PipelineValidator()


@pytest.fixture
def schema() -> SchemaModel:
    """Schema model built from the JSON fixture."""
    return SchemaModel.from_schema_document(SCHEMA_PATH.read_text(encoding="utf-8"))


@pytest.fixture
def scenario_tree(builder: TreeBuilder) -> Node:
    return builder.build(SCENARIO_YAML)


@pytest.fixture
def scenario_index(scenario_tree: Node) -> PositionIndex:
    return PositionIndex(scenario_tree)


@pytest.fixture
def store() -> DocumentStore:
    return DocumentStore()


@pytest.fixture
def workspace(store: DocumentStore, schema: SchemaModel) -> PipelineWorkspace:
    """Workspace with the fixture schema already installed."""
    return PipelineWorkspace(store=store, schema=schema)


# Line/column reference (zero-based):
#   0 steps:
#   1   - label: "Deploy"
#   2     command: "deploy.sh"
#   3     agents:
#   4       queue: "deploy"
#   5 env:
#   6   FOO: "bar"
SCENARIO_YAML = """\
steps:
  - label: "Deploy"
    command: "deploy.sh"
    agents:
      queue: "deploy"
env:
  FOO: "bar"
"""

EMPTY_STEPS_YAML = """\
steps: []
env:
  FOO: "bar"
"""

LABEL_ONLY_YAML = """\
steps:
  - label: "Build"
"""

MISSING_STEPS_YAML = """\
env:
  FOO: "bar"
"""

SAMPLE_PIPELINE_YAML = """\
# Full pipeline exercising most step types.
env:
  LANG: en_US.UTF-8

agents:
  queue: default

steps:
  - label: ":hammer: Build"
    key: build
    commands:
      - make deps
      - make build
    artifact_paths: "dist/**/*"
    agents: {queue: "builders", os: linux}

  - wait

  - block: ":rocket: Release?"
    prompt: "Ship it?"

  - group: "Deploy"
    steps:
      - label: "Staging"
        command: |
          ./deploy.sh staging
          ./smoke.sh

      - trigger: "deploy-production"
        async: true
"""
