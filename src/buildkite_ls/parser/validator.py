"""Structural validation of pipeline documents: steps, step types, env blocks."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from buildkite_ls.models.errors import Diagnostic, Severity
from buildkite_ls.models.tree import Node
from buildkite_ls.schema.model import DEFAULT_STEP_KEYS, SchemaModel

# Step types that take a non-empty string value, with their diagnostics.
_MESSAGE_STEP_TYPES = {
    "block": ("empty-block-message", "Block step must have a non-empty message"),
    "input": ("empty-input-prompt", "Input step must have a non-empty prompt message"),
    "trigger": ("empty-trigger-pipeline", "Trigger step must specify a pipeline slug"),
}


class ValidationRules(BaseModel):
    """Which keys the validator treats as required and as step types."""

    model_config = ConfigDict(frozen=True)

    steps_key: str = "steps"
    required_keys: tuple[str, ...] = ("steps",)
    step_keys: tuple[str, ...] = DEFAULT_STEP_KEYS
    group_key: str = "group"
    env_key: str = "env"
    plugins_key: str = "plugins"


def _is_blank(node: Node) -> bool:
    return node.is_null or (node.is_scalar and not (node.value or "").strip())


_BOOL_TAG = "tag:yaml.org,2002:bool"
_BOOL_VALUES = frozenset({"true", "True", "TRUE", "false", "False", "FALSE"})


def _value_kind(node: Node) -> str:
    """Name of a node's YAML type as it would appear in a message."""
    if node.is_mapping:
        return "mapping"
    if node.is_sequence:
        return "list"
    if node.tag == _BOOL_TAG or (not node.style and node.tag is None and node.value in _BOOL_VALUES):
        return "bool"
    return "scalar"


class PipelineValidator:
    """Checks a parsed pipeline against the structural rules of a Buildkite pipeline."""

    def __init__(self, rules: ValidationRules | None = None) -> None:
        self._rules = rules if rules is not None else ValidationRules()

    @property
    def rules(self) -> ValidationRules:
        return self._rules

    def validate(self, root: Node, schema: SchemaModel | None = None) -> list[Diagnostic]:
        if not root.is_mapping:
            return [
                Diagnostic(
                    code="invalid-root",
                    message="Pipeline must be a mapping of top-level keys",
                    range=root.range,
                    path=root.path,
                )
            ]

        step_keys = self._step_keys(schema)
        diagnostics: list[Diagnostic] = []
        diagnostics.extend(self._check_required_keys(root, schema))
        diagnostics.extend(self._check_env(root))

        steps = root.child(self._rules.steps_key)
        if steps is not None:
            diagnostics.extend(self._check_steps(steps, step_keys, owner="Pipeline"))
        if schema is not None:
            diagnostics.extend(self._check_enum_values(root, schema))
        return diagnostics

    def _step_keys(self, schema: SchemaModel | None) -> tuple[str, ...]:
        if schema is None:
            return self._rules.step_keys
        keys = list(self._rules.step_keys)
        keys.extend(k for k in schema.step_keys if k not in keys)
        return tuple(keys)

    # -- top level -----------------------------------------------------------

    def _check_required_keys(self, root: Node, schema: SchemaModel | None) -> list[Diagnostic]:
        required = list(self._rules.required_keys)
        constraint = schema.get_constraint("") if schema is not None else None
        if constraint is not None:
            required.extend(k for k in constraint.required if k not in required)

        errors: list[Diagnostic] = []
        present = set(root.keys())
        for key in required:
            if key in present:
                continue
            if key == self._rules.steps_key:
                message = f"Pipeline must contain a '{key}' array"
            else:
                message = f"Pipeline must contain a '{key}' key"
            errors.append(
                Diagnostic(
                    code=f"missing-{key}",
                    message=message,
                    range=root.range,
                    path=root.path,
                )
            )
        return errors

    def _check_env(self, owner: Node) -> list[Diagnostic]:
        env = owner.child(self._rules.env_key)
        if env is None or env.is_mapping or env.is_null:
            return []
        return [
            Diagnostic(
                code="invalid-env",
                message="Environment variables must be a mapping of names to values",
                range=env.range,
                path=env.path,
            )
        ]

    # -- steps ---------------------------------------------------------------

    def _check_steps(self, steps: Node, step_keys: tuple[str, ...], owner: str) -> list[Diagnostic]:
        """Validate a steps sequence and each of its entries (recursing into groups)."""
        if not steps.is_sequence:
            return [
                Diagnostic(
                    code="invalid-steps",
                    message=f"'{self._rules.steps_key}' must be a list of steps",
                    range=steps.range,
                    path=steps.path,
                )
            ]
        if not steps.children:
            return [
                Diagnostic(
                    code="empty-steps",
                    message=f"{owner} must contain at least one step.",
                    range=steps.range,
                    path=steps.path,
                )
            ]

        errors: list[Diagnostic] = []
        for index, step in enumerate(steps.children):
            errors.extend(self._check_step(step, index + 1, step_keys))
        return errors

    def _check_step(self, step: Node, number: int, step_keys: tuple[str, ...]) -> list[Diagnostic]:
        if step.is_scalar and not step.is_null and step.value in step_keys:
            # Shorthand such as ``- wait``.
            return []
        if not step.is_mapping:
            return [
                Diagnostic(
                    code="invalid-step",
                    message=f"Step {number} ({step.path}) must be a mapping",
                    range=step.range,
                    path=step.path,
                )
            ]

        errors: list[Diagnostic] = []
        errors.extend(self._check_step_type(step, number, step_keys))
        errors.extend(self._check_step_values(step))
        errors.extend(self._check_env(step))
        errors.extend(self._check_label(step))

        if step.child(self._rules.group_key) is not None:
            errors.extend(self._check_group(step, step_keys))
        return errors

    def _check_step_type(self, step: Node, number: int, step_keys: tuple[str, ...]) -> list[Diagnostic]:
        present = [k for k in step.keys() if k in step_keys]
        if not present:
            if step.child(self._rules.plugins_key) is not None:
                return [
                    Diagnostic(
                        code="missing-step-type",
                        message=(
                            f"Step {number} ({step.path}) has no explicit step type, "
                            "but plugins may provide command execution via hooks"
                        ),
                        range=step.range,
                        severity=Severity.INFORMATION,
                        path=step.path,
                    )
                ]
            return [
                Diagnostic(
                    code="missing-step-type",
                    message=(
                        f"Step {number} ({step.path}) must specify a step type: "
                        f"{', '.join(step_keys)}"
                    ),
                    range=step.range,
                    path=step.path,
                )
            ]

        # ``command`` and ``commands`` are spellings of the same step type.
        types = {"command" if k == "commands" else k for k in present}
        if len(types) > 1:
            return [
                Diagnostic(
                    code="multiple-step-types",
                    message=(
                        f"Step {number} ({step.path}) has multiple step types "
                        f"({', '.join(present)}); only one is allowed per step"
                    ),
                    range=step.range,
                    path=step.path,
                )
            ]
        return []

    def _check_step_values(self, step: Node) -> list[Diagnostic]:
        errors: list[Diagnostic] = []
        for key, (code, message) in _MESSAGE_STEP_TYPES.items():
            value = step.child(key)
            if value is not None and (_is_blank(value) or not value.is_scalar):
                errors.append(Diagnostic(code=code, message=message, range=value.range, path=value.path))

        for key in ("command", "commands"):
            value = step.child(key)
            if value is None:
                continue
            if _is_blank(value) or (value.is_sequence and not value.children):
                if step.child(self._rules.plugins_key) is not None:
                    severity = Severity.INFORMATION
                    message = "Command is empty, but plugins may provide command execution via hooks"
                else:
                    severity = Severity.WARNING
                    message = "Command should not be empty"
                errors.append(
                    Diagnostic(
                        code="empty-command",
                        message=message,
                        range=value.range,
                        severity=severity,
                        path=value.path,
                    )
                )

        wait = step.child("wait")
        if wait is not None and _value_kind(wait) != "scalar":
            errors.append(
                Diagnostic(
                    code="invalid-wait-value",
                    message=(
                        "Wait value must be null, a string message, or a number of seconds, "
                        f"got {_value_kind(wait)}"
                    ),
                    range=wait.range,
                    path=wait.path,
                )
            )
        return errors

    def _check_label(self, step: Node) -> list[Diagnostic]:
        if step.child("label") is not None:
            return []
        name = step.child("name")
        if name is None:
            if step.child("command") is None and step.child("commands") is None:
                return []
            return [
                Diagnostic(
                    code="missing-label",
                    message="Consider adding a 'label' to make this step easier to identify in the UI",
                    range=step.range,
                    severity=Severity.INFORMATION,
                    path=step.path,
                )
            ]
        return [
            Diagnostic(
                code="prefer-label",
                message="Use 'label' instead of 'name' for the step's display name",
                range=name.range,
                severity=Severity.HINT,
                path=name.path,
            )
        ]

    def _check_group(self, step: Node, step_keys: tuple[str, ...]) -> list[Diagnostic]:
        nested = step.child(self._rules.steps_key)
        if nested is None:
            return [
                Diagnostic(
                    code="missing-group-steps",
                    message=f"Group step must contain a '{self._rules.steps_key}' array",
                    range=step.range,
                    path=step.path,
                )
            ]
        return self._check_steps(nested, step_keys, owner="Group")

    # -- schema-declared values ----------------------------------------------

    def _check_enum_values(self, root: Node, schema: SchemaModel) -> list[Diagnostic]:
        """Flag mapping values outside the schema's ``enum`` for their path."""
        warnings: list[Diagnostic] = []
        for node in root.walk():
            if node.key is None or not node.is_scalar or node.is_null:
                continue
            constraint = schema.get_constraint(node.path)
            if constraint is None or not constraint.enum or node.value in constraint.enum:
                continue
            warnings.append(
                Diagnostic(
                    code="invalid-value",
                    message=(
                        f"Value '{node.value}' is not allowed for '{node.key}'; "
                        f"expected one of: {', '.join(constraint.enum)}"
                    ),
                    range=node.range,
                    severity=Severity.WARNING,
                    path=node.path,
                )
            )
        return warnings
