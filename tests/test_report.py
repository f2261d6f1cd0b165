import pytest

from flowgraph import Flow, FlowRunner, Step, render_report
from flowgraph.exceptions import ErrorKind, ExecutorError


@pytest.fixture
def flow():
    return Flow.from_steps(
        "triage",
        Step(id="collect", name="Collect logs", agent="shell"),
        Step(id="analyze", agent="llm", depends_on={"collect"}),
        Step(id="notify", agent="chat", depends_on={"analyze"}),
        output="analyze",
        name="Incident triage",
        settings={"failFast": False},
    )


@pytest.mark.anyio
async def test_report(executor, flow):
    executor.on("collect", "3 errors")
    executor.on("notify", ExecutorError("denied", ErrorKind.AUTH))
    result = await FlowRunner(executor).run(flow)

    report = render_report(flow, result, request_id="req-1")

    assert report.startswith("---\ntype: \"flow_report\"\nflow: \"triage\"\n")
    assert f'flow_run_id: "{result.flow_run_id}"' in report
    assert 'request_id: "req-1"' in report
    assert "steps_succeeded: 2" in report
    assert "steps_failed: 1" in report
    assert "# Flow Report: Incident triage (partially_failed)" in report
    assert "| collect | 0 | ✅ succeeded | 1 |" in report
    assert "| notify | 2 | ❌ failed | 1 |" in report
    assert "3 errors" in report
    assert "**Error:** denied" in report
    assert '    collect["Collect logs<br/>(shell)"]' in report
    assert "    collect --> analyze" in report
    assert "    analyze --> notify" in report


@pytest.mark.anyio
async def test_report_skipped_steps(executor, flow):
    executor.on("collect", ExecutorError("no access", ErrorKind.AUTH))
    result = await FlowRunner(executor).run(flow)

    report = render_report(flow, result)

    assert "request_id" not in report
    assert "(failed)" in report
    assert "steps_skipped: 2" in report
    assert "**Reason:** dependencies did not succeed: collect" in report
