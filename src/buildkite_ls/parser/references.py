"""Step references: resolving ``depends_on`` entries to the steps they name."""

from __future__ import annotations

from collections.abc import Iterator

from buildkite_ls.models.tree import Node

DEPENDS_ON_KEY = "depends_on"
# Attributes that give a step an addressable key, in precedence order.
STEP_KEY_ATTRIBUTES = ("key", "identifier", "id")


def iter_steps(root: Node, steps_key: str = "steps") -> Iterator[Node]:
    """Yield every mapping step in document order, descending into groups."""
    steps = root.child(steps_key) if root.is_mapping else None
    if steps is None or not steps.is_sequence:
        return
    for step in steps.children:
        if not step.is_mapping:
            continue
        yield step
        yield from iter_steps(step, steps_key)


def label_key(label: str) -> str:
    """Key Buildkite derives from a label: lower-cased, spaces to dashes, colons dropped."""
    return label.lower().replace(" ", "-").replace(":", "")


def step_key(step: Node) -> str | None:
    """The explicit key of *step*, else the key derived from its label."""
    for attribute in STEP_KEY_ATTRIBUTES:
        node = step.child(attribute)
        if node is not None and node.is_scalar and not node.is_null:
            return node.value
    label = step.child("label")
    if label is not None and label.is_scalar and not label.is_null and label.value:
        return label_key(label.value)
    return None


def referenced_key(node: Node) -> str | None:
    """The step key *node* refers to, when it is a ``depends_on`` entry.

    Accepts ``depends_on: build``, list items (``- build``) and the
    ``step`` attribute of mapping items (``- step: build``).
    """
    if not node.is_scalar or node.is_null or not node.value:
        return None
    segments = node.segments
    if segments[-1:] == [DEPENDS_ON_KEY]:
        return node.value
    if len(segments) >= 2 and segments[-2] == DEPENDS_ON_KEY and segments[-1].isdigit():
        return node.value
    if (
        len(segments) >= 3
        and segments[-3] == DEPENDS_ON_KEY
        and segments[-2].isdigit()
        and segments[-1] == "step"
    ):
        return node.value
    return None


def find_step(root: Node, key: str, steps_key: str = "steps") -> Node | None:
    """First step whose key (explicit or label-derived) equals *key*."""
    for step in iter_steps(root, steps_key):
        if step_key(step) == key:
            return step
    return None
