import pytest

from flowgraph import ExecutionContext, StepResult, StepStatus
from flowgraph.exceptions import ExtractionError


@pytest.fixture
def context():
    return ExecutionContext(["a", "b", "c"])


def test_starts_pending(context):
    assert list(context) == ["a", "b", "c"]
    assert context.with_status(StepStatus.PENDING) == ["a", "b", "c"]
    assert not any(result.status.terminal for result in context.values())


def test_record(context):
    context.record(StepResult(step_id="b", status=StepStatus.SUCCEEDED, output="x"))
    context.record(StepResult(step_id="c", status=StepStatus.SKIPPED))

    assert context.output_of("b") == "x"
    assert context.outputs(["a", "b", "c"]) == {"b": "x"}
    assert context.with_status(StepStatus.SUCCEEDED, StepStatus.SKIPPED) == [
        "b",
        "c",
    ]


def test_record_unknown_step(context):
    with pytest.raises(KeyError):
        context.record(StepResult(step_id="z"))


def test_output_of_unfinished_step(context):
    with pytest.raises(ExtractionError, match="has no output"):
        context.output_of("a")


def test_duration():
    assert StepResult(step_id="a").duration is None
