from typing import TYPE_CHECKING

from .context import StepStatus

if TYPE_CHECKING:  # pragma: no cover
    from .context import StepResult
    from .flow import Flow
    from .runner import FlowResult

_STATUS_MARKERS = {
    StepStatus.SUCCEEDED: "✅",
    StepStatus.FAILED: "❌",
    StepStatus.SKIPPED: "⏭️",
    StepStatus.RUNNING: "⏳",
    StepStatus.PENDING: "⏳",
}


def _ms(seconds: float | None) -> str:
    return "-" if seconds is None else f"{round(seconds * 1000)}ms"


def _frontmatter(
    flow: "Flow", result: "FlowResult", request_id: str | None
) -> list[str]:
    results = result.step_results
    fields = {
        "type": "flow_report",
        "flow": flow.id,
        "flow_run_id": str(result.flow_run_id),
        "status": result.status.value,
        "duration_ms": round(result.duration * 1000),
        "steps_succeeded": len(results.with_status(StepStatus.SUCCEEDED)),
        "steps_failed": len(results.with_status(StepStatus.FAILED)),
        "steps_skipped": len(results.with_status(StepStatus.SKIPPED)),
        "completed_at": result.completed_at.isoformat(),
    }
    if request_id is not None:
        fields["request_id"] = request_id

    return [
        "---",
        *(
            f'{key}: "{value}"' if isinstance(value, str) else f"{key}: {value}"
            for key, value in fields.items()
        ),
        "---",
        "",
    ]


def _summary(flow: "Flow", result: "FlowResult") -> list[str]:
    plan = flow.resolve().execution_plan
    lines = [
        "## Execution Summary",
        "",
        "| Step | Wave | Status | Attempts | Duration |",
        "|------|------|--------|----------|----------|",
    ]
    for step_id, step_result in result.step_results.items():
        status = step_result.status
        lines.append(
            f"| {step_id} | {plan.wave_of(step_id)}"
            f" | {_STATUS_MARKERS[status]} {status.value}"
            f" | {step_result.attempts} | {_ms(step_result.duration)} |"
        )

    lines += [
        "",
        f"**Total Duration:** {_ms(result.duration)}",
        f"**Overall Status:** {result.status.value}",
        "",
    ]
    if result.error is not None:
        lines += [f"**Error:** {result.error}", ""]

    return lines


def _step_output(step_id: str, step_result: "StepResult") -> list[str]:
    lines = [f"### {step_id}", "", f"**Status:** {step_result.status.value}"]

    if step_result.status is StepStatus.SUCCEEDED:
        lines += ["", step_result.output or "_(empty output)_"]
    elif step_result.status is StepStatus.FAILED:
        lines.append(f"**Error:** {step_result.error}")
        for record in step_result.retry_history:
            lines.append(
                f"- attempt {record.attempt} ({record.kind.value}): {record.error}"
            )
    elif step_result.status is StepStatus.SKIPPED:
        lines.append(f"**Reason:** {step_result.skip_reason}")

    lines.append("")
    return lines


def _dependency_graph(flow: "Flow") -> list[str]:
    lines = ["## Dependency Graph", "", "```mermaid", "graph TD"]
    lines += [
        f'    {step.id}["{step.display_name}<br/>({step.agent})"]'
        for step in flow.steps
    ]
    lines += [
        f"    {dependency} --> {step.id}"
        for step in flow.steps
        for dependency in sorted(step.depends_on)
    ]
    lines += ["```", "", "```", str(flow.resolve().topology), "```", ""]

    return lines


def render_report(
    flow: "Flow", result: "FlowResult", request_id: str | None = None
) -> str:
    """Render a markdown report of a finished run of `flow`."""
    lines = _frontmatter(flow, result, request_id)
    lines += [f"# Flow Report: {flow.name or flow.id} ({result.status.value})", ""]
    lines += _summary(flow, result)

    lines += ["## Step Outputs", ""]
    for step_id, step_result in result.step_results.items():
        lines += _step_output(step_id, step_result)

    lines += _dependency_graph(flow)
    return "\n".join(lines)
