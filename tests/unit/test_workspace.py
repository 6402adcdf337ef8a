"""Tests for the editor-facing workspace operations."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildkite_ls.models.tree import TextRange
from buildkite_ls.schema.loader import SchemaFetchError
from buildkite_ls.schema.model import SchemaModel, SchemaParseError
from buildkite_ls.service.document_store import ContentChange, DocumentNotFoundError, DocumentStore
from buildkite_ls.service.workspace import PipelineWorkspace
from buildkite_ls.settings import Settings
from tests.conftest import (
    EMPTY_STEPS_YAML,
    LABEL_ONLY_YAML,
    PIPELINE_URI,
    SCENARIO_YAML,
    SCHEMA_PATH,
)

BROKEN_YAML = "steps:\n  - command: [unclosed\n"

BLANK_LINE_YAML = "steps:\n  - command: x\n\nenv:\n  FOO: bar\n"

DEPENDENCIES_YAML = """\
steps:
  - label: "Build App"
    command: make
  - key: tests
    command: make test
  - label: Deploy
    depends_on:
      - build-app
      - step: tests
    command: ./deploy.sh
  - label: Lint
    command: lint
    depends_on: tests
"""


class TestLifecycle:
    def test_open_valid_document(self, workspace: PipelineWorkspace) -> None:
        assert workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1) == []

    def test_open_reports_validation(self, workspace: PipelineWorkspace) -> None:
        diagnostics = workspace.on_open(PIPELINE_URI, LABEL_ONLY_YAML, 1)
        assert [d.code for d in diagnostics] == ["missing-step-type"]

    def test_change_recomputes(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        diagnostics = workspace.on_change(PIPELINE_URI, EMPTY_STEPS_YAML, 2)
        assert [d.code for d in diagnostics] == ["empty-steps"]

    def test_incremental_change(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, "steps:\n  - command: a\n", 1)
        change = ContentChange(text='""', range=TextRange.from_coords(1, 13, 1, 14))
        diagnostics = workspace.on_change(PIPELINE_URI, [change], 2)
        assert [d.code for d in diagnostics] == ["empty-command", "missing-label"]

    def test_change_unknown_document(self, workspace: PipelineWorkspace) -> None:
        with pytest.raises(DocumentNotFoundError):
            workspace.on_change("file:///nope.yml", "steps: []\n", 1)

    def test_save(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, LABEL_ONLY_YAML, 1)
        assert workspace.on_save(PIPELINE_URI, SCENARIO_YAML) == []

    def test_close_forgets_document(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, LABEL_ONLY_YAML, 1)
        workspace.on_close(PIPELINE_URI)
        assert workspace.diagnostics(PIPELINE_URI) == []
        assert workspace.hover(PIPELINE_URI, 1, 6) is None


class TestDiagnostics:
    def test_parse_error_then_last_good_tree(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, LABEL_ONLY_YAML, 1)
        diagnostics = workspace.on_change(PIPELINE_URI, BROKEN_YAML, 2)
        assert [d.code for d in diagnostics] == ["yaml-parse-error", "missing-step-type"]
        assert diagnostics[0].message.startswith("YAML parse error: ")
        assert diagnostics[0].is_error

    def test_parse_error_on_first_open(self, workspace: PipelineWorkspace) -> None:
        diagnostics = workspace.on_open(PIPELINE_URI, BROKEN_YAML, 1)
        assert [d.code for d in diagnostics] == ["yaml-parse-error"]

    def test_parse_error_range_covers_rest_of_line(self, workspace: PipelineWorkspace) -> None:
        diagnostics = workspace.on_open(PIPELINE_URI, "steps: []\nsteps: []\n", 1)
        assert diagnostics[0].code == "yaml-parse-error"
        assert diagnostics[0].range == TextRange.from_coords(1, 0, 1, 9)

    def test_form_feed_is_not_a_line_break(self, workspace: PipelineWorkspace) -> None:
        diagnostics = workspace.on_open(PIPELINE_URI, "steps: []\n# a\x0cb\n", 1)
        assert [d.code for d in diagnostics] == ["yaml-parse-error"]
        assert "#x000c" in diagnostics[0].message
        assert diagnostics[0].range == TextRange.from_coords(1, 3, 1, 5)

    def test_diagnostics_query_matches_last_publish(self, workspace: PipelineWorkspace) -> None:
        published = workspace.on_open(PIPELINE_URI, EMPTY_STEPS_YAML, 1)
        assert workspace.diagnostics(PIPELINE_URI) == published

    def test_unknown_document(self, workspace: PipelineWorkspace) -> None:
        assert workspace.diagnostics("file:///nope.yml") == []


class TestHover:
    def test_hover_on_queue(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        result = workspace.hover(PIPELINE_URI, 4, 14)
        assert result is not None
        assert result.contents == "The agent queue to run on"
        assert result.path == "steps/0/agents/queue"
        assert result.range == TextRange.from_coords(4, 6, 4, 21)

    def test_hover_on_steps_key(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        result = workspace.hover(PIPELINE_URI, 0, 2)
        assert result is not None
        assert result.contents == "A list of steps"

    def test_undocumented_node(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        assert workspace.hover(PIPELINE_URI, 6, 4) is None

    def test_hover_survives_parse_error(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        workspace.on_change(PIPELINE_URI, BROKEN_YAML, 2)
        result = workspace.hover(PIPELINE_URI, 4, 14)
        assert result is not None
        assert result.path == "steps/0/agents/queue"

    def test_outside_document(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        assert workspace.hover(PIPELINE_URI, 40, 0) is None

    def test_blank_line_between_keys(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, BLANK_LINE_YAML, 1)
        assert workspace.hover(PIPELINE_URI, 2, 0) is None


class TestCompletion:
    def test_step_keys_not_yet_present(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        keys = workspace.completion(PIPELINE_URI, 1, 6)
        assert "env" in keys
        assert "plugins" in keys
        assert "label" not in keys
        assert "command" not in keys
        assert "agents" not in keys

    def test_root_fallback_outside_nodes(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML + "\n\n", 1)
        assert workspace.completion(PIPELINE_URI, 8, 0) == ["agents", "notify"]

    def test_inside_steps_sequence(self, workspace: PipelineWorkspace, schema: SchemaModel) -> None:
        workspace.on_open(PIPELINE_URI, "steps:\n  - \n", 1)
        assert workspace.completion(PIPELINE_URI, 1, 3) == list(schema.step_keys)

    def test_blank_line_inside_step(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, "steps:\n  - label: a\n\n    command: b\n", 1)
        keys = workspace.completion(PIPELINE_URI, 2, 4)
        assert "env" in keys
        assert "label" not in keys
        assert "command" not in keys

    def test_agents_mapping(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        assert workspace.completion(PIPELINE_URI, 4, 14) == []

    def test_unknown_document(self, workspace: PipelineWorkspace) -> None:
        assert workspace.completion("file:///nope.yml", 0, 0) == []


class TestDefinition:
    def test_list_entry_resolves_label_key(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, DEPENDENCIES_YAML, 1)
        step = workspace.definition(PIPELINE_URI, 7, 10)
        assert step is not None
        assert step.path == "steps/0"
        assert step.range.start.line == 1

    def test_step_attribute_resolves_explicit_key(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, DEPENDENCIES_YAML, 1)
        step = workspace.definition(PIPELINE_URI, 8, 16)
        assert step is not None
        assert step.path == "steps/1"

    def test_scalar_depends_on(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, DEPENDENCIES_YAML, 1)
        step = workspace.definition(PIPELINE_URI, 12, 18)
        assert step is not None
        assert step.path == "steps/1"

    def test_outside_depends_on(self, workspace: PipelineWorkspace) -> None:
        workspace.on_open(PIPELINE_URI, DEPENDENCIES_YAML, 1)
        assert workspace.definition(PIPELINE_URI, 5, 12) is None

    def test_unknown_key(self, workspace: PipelineWorkspace) -> None:
        text = "steps:\n  - label: a\n    command: a\n    depends_on: nope\n"
        workspace.on_open(PIPELINE_URI, text, 1)
        assert workspace.definition(PIPELINE_URI, 3, 18) is None

    def test_step_inside_group(self, workspace: PipelineWorkspace) -> None:
        text = (
            "steps:\n"
            "  - group: Tests\n"
            "    steps:\n"
            "      - key: unit\n"
            "        command: make unit\n"
            "  - label: Report\n"
            "    command: report\n"
            "    depends_on: unit\n"
        )
        workspace.on_open(PIPELINE_URI, text, 1)
        step = workspace.definition(PIPELINE_URI, 7, 17)
        assert step is not None
        assert step.path == "steps/0/steps/0"

    def test_works_without_schema(self) -> None:
        workspace = PipelineWorkspace()
        workspace.on_open(PIPELINE_URI, DEPENDENCIES_YAML, 1)
        step = workspace.definition(PIPELINE_URI, 12, 18)
        assert step is not None
        assert step.path == "steps/1"

    def test_unknown_document(self, workspace: PipelineWorkspace) -> None:
        assert workspace.definition("file:///nope.yml", 0, 0) is None


class TestWithoutSchema:
    def test_structural_checks_disabled(self) -> None:
        workspace = PipelineWorkspace()
        assert workspace.on_open(PIPELINE_URI, EMPTY_STEPS_YAML, 1) == []

    def test_parse_errors_still_reported(self) -> None:
        workspace = PipelineWorkspace()
        diagnostics = workspace.on_open(PIPELINE_URI, BROKEN_YAML, 1)
        assert [d.code for d in diagnostics] == ["yaml-parse-error"]

    def test_hover_and_completion_empty(self) -> None:
        workspace = PipelineWorkspace()
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        assert workspace.hover(PIPELINE_URI, 4, 14) is None
        assert workspace.completion(PIPELINE_URI, 1, 6) == []

    def test_set_schema_enables_features(self, schema: SchemaModel) -> None:
        workspace = PipelineWorkspace()
        workspace.on_open(PIPELINE_URI, EMPTY_STEPS_YAML, 1)
        workspace.set_schema(schema)
        assert [d.code for d in workspace.diagnostics(PIPELINE_URI)] == ["empty-steps"]


class TestLoadSchema:
    def test_load_from_file(self) -> None:
        workspace = PipelineWorkspace()
        schema = workspace.load_schema(Settings(schema_path=SCHEMA_PATH))
        assert schema is not None
        assert workspace.schema is schema
        assert workspace.schema_error is None

    def test_failure_degrades(self, tmp_path: Path) -> None:
        workspace = PipelineWorkspace()
        schema = workspace.load_schema(Settings(schema_path=tmp_path / "missing.json"))
        assert schema is None
        assert workspace.schema is None
        assert isinstance(workspace.schema_error, SchemaFetchError)
        assert workspace.on_open(PIPELINE_URI, BROKEN_YAML, 1)[0].code == "yaml-parse-error"

    def test_failure_keeps_previous_schema(self, schema: SchemaModel, tmp_path: Path) -> None:
        workspace = PipelineWorkspace(schema=schema)
        workspace.load_schema(Settings(schema_path=tmp_path / "missing.json"))
        assert workspace.schema is schema

    def test_undecodable_file_degrades(self, tmp_path: Path) -> None:
        path = tmp_path / "schema.json"
        path.write_bytes(b"\xff\xfe{}")
        workspace = PipelineWorkspace()
        assert workspace.load_schema(Settings(schema_path=path)) is None
        assert isinstance(workspace.schema_error, SchemaParseError)

    def test_fetch_disabled(self) -> None:
        workspace = PipelineWorkspace()
        assert workspace.load_schema(Settings(fetch_schema=False, schema_path=None)) is None
        assert workspace.schema_error is None


class TestFromSettings:
    def test_limits_flow_into_builder(self) -> None:
        workspace = PipelineWorkspace.from_settings(Settings(max_document_size=10))
        diagnostics = workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        assert [d.code for d in diagnostics] == ["yaml-parse-error"]
        assert "maximum size" in diagnostics[0].message


class TestInjection:
    def test_empty_store_is_kept(self) -> None:
        store = DocumentStore()
        workspace = PipelineWorkspace(store=store)
        assert workspace.store is store
        workspace.on_open(PIPELINE_URI, SCENARIO_YAML, 1)
        assert PIPELINE_URI in store
