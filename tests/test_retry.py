import anyio
import pytest

from flowgraph import RetryPolicy, Step, StepStatus, execute_step
from flowgraph.exceptions import ErrorKind, ExecutorError, StepTimeoutError
from flowgraph.retry import classify


def step(max_attempts=1, backoff_ms=0, **kwargs):
    return Step(
        id="call",
        agent="llm",
        retry=RetryPolicy(max_attempts=max_attempts, backoff_ms=backoff_ms),
        **kwargs,
    )


@pytest.mark.parametrize(
    "error, kind",
    (
        (ExecutorError("slow down", ErrorKind.RATE_LIMIT), ErrorKind.RATE_LIMIT),
        (TimeoutError(), ErrorKind.TIMEOUT),
        (ConnectionResetError(), ErrorKind.CONNECTION),
        (ValueError(), ErrorKind.OTHER),
    ),
)
def test_classify(error, kind):
    assert classify(error) is kind


def test_retryable_kinds():
    assert {kind for kind in ErrorKind if kind.retryable} == {
        ErrorKind.RATE_LIMIT,
        ErrorKind.CONNECTION,
        ErrorKind.TIMEOUT,
    }


def test_delay_ms():
    policy = RetryPolicy(max_attempts=5, backoff_ms=100)

    assert [policy.delay_ms(attempt) for attempt in (1, 2, 3)] == [100, 200, 400]
    assert policy.delay_ms(4, cap_ms=500) == 500


@pytest.mark.anyio
async def test_success_first_attempt(executor):
    executor.on("call", "done")
    result = await execute_step(step(), "prompt", executor)

    assert result.status is StepStatus.SUCCEEDED
    assert result.output == "done"
    assert result.attempts == 1
    assert result.retry_history == ()
    assert result.duration >= 0
    assert executor.calls == [("call", "prompt")]


@pytest.mark.anyio
async def test_retries_retryable_errors(executor):
    executor.on(
        "call",
        ExecutorError("busy", ErrorKind.RATE_LIMIT),
        ConnectionError("reset"),
        "finally",
    )
    result = await execute_step(step(max_attempts=3, backoff_ms=1), "", executor)

    assert result.status is StepStatus.SUCCEEDED
    assert result.output == "finally"
    assert result.attempts == 3
    assert [record.kind for record in result.retry_history] == [
        ErrorKind.RATE_LIMIT,
        ErrorKind.CONNECTION,
    ]
    assert [record.delay_ms for record in result.retry_history] == [1, 2]


@pytest.mark.anyio
async def test_exhausted_attempts_keep_last_error(executor):
    last = ExecutorError("still busy", ErrorKind.RATE_LIMIT)
    executor.on("call", ExecutorError("busy", ErrorKind.RATE_LIMIT), last)
    result = await execute_step(step(max_attempts=2), "", executor)

    assert result.status is StepStatus.FAILED
    assert result.error is last
    assert result.attempts == 2
    assert executor.attempts("call") == 2


@pytest.mark.anyio
@pytest.mark.parametrize("kind", (ErrorKind.VALIDATION, ErrorKind.AUTH))
async def test_non_retryable_fails_immediately(executor, kind):
    executor.on("call", ExecutorError("nope", kind))
    result = await execute_step(step(max_attempts=5), "", executor)

    assert result.status is StepStatus.FAILED
    assert result.attempts == 1
    assert executor.attempts("call") == 1


@pytest.mark.anyio
async def test_non_string_output_fails_without_retry(executor):
    executor.on("call", 42)
    result = await execute_step(step(max_attempts=3), "", executor)

    assert result.status is StepStatus.FAILED
    assert isinstance(result.error, ExecutorError)
    assert result.error.kind is ErrorKind.VALIDATION
    assert "returned int" in str(result.error)
    assert result.attempts == 1


@pytest.mark.anyio
async def test_backoff_only_between_attempts(executor):
    executor.on("call", ConnectionError(), "ok")

    with anyio.fail_after(1):
        result = await execute_step(step(max_attempts=2, backoff_ms=50), "", executor)

    assert result.succeeded
    assert result.duration >= 0.04


@pytest.mark.anyio
async def test_backoff_capped(executor):
    executor.on("call", ConnectionError(), "ok")

    with anyio.fail_after(1):
        result = await execute_step(
            step(max_attempts=2, backoff_ms=60_000), "", executor, max_backoff_ms=10
        )

    assert result.succeeded
    assert result.retry_history[0].delay_ms == 10


@pytest.mark.anyio
async def test_step_timeout_cancels_and_retries(executor):
    executor.on("call", delay=1)
    result = await execute_step(step(max_attempts=2, timeout=20), "", executor)

    assert result.status is StepStatus.FAILED
    assert isinstance(result.error, StepTimeoutError)
    assert result.error.kind is ErrorKind.TIMEOUT
    assert result.attempts == 2
    assert result.duration < 1
