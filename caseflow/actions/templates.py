"""``{{...}}`` placeholder parsing and resolution for action steps.

Supported references::

    {{input.<field>[.<path>]}}
    {{steps.<step_id>.output[.<path>]}}
    {{timestamp}}

A string made of a single placeholder resolves to the referenced value with
its type intact; placeholders embedded in longer strings are interpolated as
text (mappings and lists as JSON, ``None`` as ``null``).
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from ..errors import TemplateResolutionError

PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

ROOT_INPUT = "input"
ROOT_STEPS = "steps"
ROOT_TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class Reference:
    """Parsed form of one placeholder expression."""

    expression: str
    root: str
    step_id: Optional[str] = None
    path: Tuple[str, ...] = ()


def parse_reference(expression: str) -> Reference:
    """Parse the inside of a placeholder.

    Raises:
        TemplateResolutionError: If the expression is not a known form.
    """
    parts = expression.strip().split(".")
    if any(not p for p in parts):
        raise TemplateResolutionError(expression, "empty path segment")

    root = parts[0]
    if root == ROOT_TIMESTAMP and len(parts) == 1:
        return Reference(expression, root)
    if root == ROOT_INPUT and len(parts) >= 2:
        return Reference(expression, root, path=tuple(parts[1:]))
    if root == ROOT_STEPS and len(parts) >= 3 and parts[2] == "output":
        return Reference(expression, root, step_id=parts[1], path=tuple(parts[3:]))
    raise TemplateResolutionError(expression, "unknown reference form")


def iter_placeholders(value: Any) -> Iterator[str]:
    """Yield every placeholder expression found in ``value``, recursively."""
    if isinstance(value, str):
        for match in PLACEHOLDER_RE.finditer(value):
            yield match.group(1)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_placeholders(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_placeholders(item)


def referenced_steps(value: Any) -> Set[str]:
    """Return ids of steps whose output ``value`` refers to."""
    step_ids: Set[str] = set()
    for expression in iter_placeholders(value):
        try:
            ref = parse_reference(expression)
        except TemplateResolutionError:
            continue
        if ref.step_id is not None:
            step_ids.add(ref.step_id)
    return step_ids


@dataclass
class TemplateContext:
    """Bindings visible while resolving one step.

    Only ``input`` and the outputs of steps that already completed are
    present, so a reference to a later step can never resolve.
    """

    input: Mapping[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    def bind_output(self, step_id: str, output: Any) -> None:
        if step_id in self.outputs:
            raise ValueError(f"Output for step {step_id} is already bound")
        self.outputs[step_id] = copy.deepcopy(output)

    def lookup(self, ref: Reference) -> Any:
        if ref.root == ROOT_TIMESTAMP:
            return self.timestamp
        if ref.root == ROOT_INPUT:
            return _walk(self.input, ref.path, ref.expression)
        if ref.step_id not in self.outputs:
            raise TemplateResolutionError(
                ref.expression, f"step '{ref.step_id}' has not produced output"
            )
        return _walk(self.outputs[ref.step_id], ref.path, ref.expression)


def _walk(value: Any, path: Tuple[str, ...], expression: str) -> Any:
    current = value
    for segment in path:
        if isinstance(current, Mapping):
            if segment not in current:
                raise TemplateResolutionError(expression, f"missing key '{segment}'")
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                raise TemplateResolutionError(expression, f"index {index} out of range")
            current = current[index]
        else:
            raise TemplateResolutionError(expression, f"cannot descend into '{segment}'")
    return current


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def resolve_string(template: str, context: TemplateContext) -> Any:
    whole = PLACEHOLDER_RE.fullmatch(template.strip())
    if whole and template.strip() == template:
        return copy.deepcopy(context.lookup(parse_reference(whole.group(1))))

    def replace(match: "re.Match[str]") -> str:
        value = context.lookup(parse_reference(match.group(1)))
        return "null" if value is None else _to_text(value)

    return PLACEHOLDER_RE.sub(replace, template)


def resolve(value: Any, context: TemplateContext) -> Any:
    """Resolve every placeholder in ``value`` against ``context``.

    Raises:
        TemplateResolutionError: Naming the first placeholder that fails.
    """
    if isinstance(value, str):
        return resolve_string(value, context)
    if isinstance(value, Mapping):
        return {key: resolve(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve(item, context) for item in value]
    return value


def unresolved_references(
    value: Any, available_steps: Set[str]
) -> List[str]:
    """List placeholders in ``value`` that point outside ``available_steps``.

    Malformed expressions are reported too.
    """
    problems = []
    for expression in iter_placeholders(value):
        try:
            ref = parse_reference(expression)
        except TemplateResolutionError:
            problems.append(expression)
            continue
        if ref.step_id is not None and ref.step_id not in available_steps:
            problems.append(expression)
    return problems
