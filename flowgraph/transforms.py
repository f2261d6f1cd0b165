"""
Built-in transforms computing a step's input from the original request and the
outputs of the steps it depends on. Every transform is a pure function.
"""

import json
import re
from typing import TYPE_CHECKING

from .exceptions import ExtractionError
from .step import AggregateSource, StepSource, Transform

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping, Sequence
    from typing import Any

    from .context import ExecutionContext
    from .step import Step

_VARIABLE = re.compile(r"\{\{(\w+)\}\}")
_ARRAY_INDEX = re.compile(r"\d+")


def passthrough(input: str) -> str:
    return input


def merge_as_context(inputs: "Sequence[str]") -> str:
    """Join outputs as `## Step <n>` markdown sections separated by a blank line."""
    return "\n\n".join(f"## Step {i}\n{content}" for i, content in enumerate(inputs, 1))


def append_to_request(request: str, step_output: str) -> str:
    request_part = f"Original: {request}" if request else "Original:"
    output_part = f"Step Output: {step_output}" if step_output else "Step Output:"
    return f"{request_part}\n\n{output_part}"


def extract_section(input: str, name: str) -> str:
    """
    Return the body of the first `## ` heading containing `name`, up to the next
    `## ` heading. Blank lines around the body are dropped.
    """
    section: list[str] | None = None

    for line in input.split("\n"):
        if line.startswith("## "):
            if section is not None:
                break
            elif name in line:
                section = []
        elif section is not None:
            section.append(line)

    if section is None:
        raise ExtractionError(f"Section '{name}' not found")

    while section and not section[0].strip():
        section.pop(0)
    while section and not section[-1].strip():
        section.pop()

    return "\n".join(section)


def json_extract(input: str, path: str) -> "Any":
    try:
        current = json.loads(input)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Invalid JSON input: {e}") from e

    for segment in path.split("."):
        if isinstance(current, list) and _ARRAY_INDEX.fullmatch(segment):
            index = int(segment)
            if index >= len(current):
                raise ExtractionError(f"Field '{path}' not found")

            current = current[index]
        elif isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            raise ExtractionError(f"Field '{path}' not found")

    return current


def _stringify(value: "Any") -> str:
    return value if isinstance(value, str) else json.dumps(value)


def template_fill(template: str, context: "Mapping[str, Any]") -> str:
    for variable in _VARIABLE.findall(template):
        if variable not in context:
            raise ExtractionError(f"Missing context variable: {variable}")

    return _VARIABLE.sub(lambda match: _stringify(context[match.group(1)]), template)


def resolve_input(step: "Step", request: str, context: "ExecutionContext") -> str:
    """
    Compute the prompt for `step`. Every step referenced by its input source must
    already have succeeded.
    """
    source = step.input.source

    if isinstance(source, StepSource):
        gathered: list[str] = [context.output_of(source.step_id)]
    elif isinstance(source, AggregateSource):
        gathered = [context.output_of(step_id) for step_id in source.from_]
    else:
        gathered = [request]

    text = "\n\n".join(gathered)
    transform = step.input.transform

    if transform is Transform.PASSTHROUGH:
        return passthrough(text)
    elif transform is Transform.MERGE_AS_CONTEXT:
        return merge_as_context(gathered)
    elif transform is Transform.APPEND_TO_REQUEST:
        return append_to_request(request, text)
    elif transform is Transform.EXTRACT_SECTION:
        return extract_section(text, step.input.args)
    elif transform is Transform.JSON_EXTRACT:
        return _stringify(json_extract(text, step.input.args))
    elif transform is Transform.TEMPLATE_FILL:
        variables: dict[str, "Any"] = {"request": request, "input": text}
        variables.update(context.outputs(step.depends_on))
        variables.update(step.input.args or {})
        return template_fill(text, variables)

    raise ExtractionError(f"Unknown transform: {transform}")
