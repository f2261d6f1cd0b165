import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import anyio

from .context import AttemptRecord, StepResult, StepStatus
from .exceptions import ErrorKind, ExecutorError, StepTimeoutError

if TYPE_CHECKING:  # pragma: no cover
    from .executor import AgentExecutor
    from .step import Step

logger = logging.getLogger(__name__)


def classify(error: BaseException) -> ErrorKind:
    if isinstance(error, ExecutorError):
        return error.kind
    elif isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    elif isinstance(error, ConnectionError):
        return ErrorKind.CONNECTION

    return ErrorKind.OTHER


async def _attempt(
    step: "Step", resolved_input: str, agent_executor: "AgentExecutor"
) -> str:
    deadline = None if step.timeout_ms is None else step.timeout_ms / 1000

    with anyio.move_on_after(deadline):
        output = await agent_executor.execute(step, resolved_input)
        if not isinstance(output, str):
            raise ExecutorError(
                f"Agent '{step.agent}' returned {type(output).__name__},"
                " expected str.",
                ErrorKind.VALIDATION,
            )

        return output

    # only reached when the deadline cancelled the call
    raise StepTimeoutError(step.id, step.timeout_ms)


async def execute_step(
    step: "Step",
    resolved_input: str,
    agent_executor: "AgentExecutor",
    *,
    max_backoff_ms: int | None = None,
) -> StepResult:
    """
    Run one step through the agent executor, retrying retryable failures with
    exponential backoff. Failures are returned as a failed StepResult, never raised.
    """
    started_at = datetime.now(timezone.utc)
    max_attempts = step.retry.max_attempts
    history: list[AttemptRecord] = []

    for attempt in range(1, max_attempts + 1):
        try:
            output = await _attempt(step, resolved_input, agent_executor)
        except Exception as e:
            kind = classify(e)
            retry = kind.retryable and attempt < max_attempts
            delay_ms = step.retry.delay_ms(attempt, max_backoff_ms) if retry else 0
            history.append(
                AttemptRecord(
                    attempt=attempt, error=str(e), kind=kind, delay_ms=delay_ms
                )
            )

            if not retry:
                logger.debug(
                    "step '%s' failed on attempt %d/%d (%s): %s",
                    step.id,
                    attempt,
                    max_attempts,
                    kind.value,
                    e,
                )
                return StepResult(
                    step_id=step.id,
                    status=StepStatus.FAILED,
                    error=e,
                    attempts=attempt,
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc),
                    retry_history=tuple(history),
                )

            logger.warning(
                "step '%s' attempt %d/%d failed (%s), retrying in %dms: %s",
                step.id,
                attempt,
                max_attempts,
                kind.value,
                delay_ms,
                e,
            )
            await anyio.sleep(delay_ms / 1000)
        else:
            return StepResult(
                step_id=step.id,
                status=StepStatus.SUCCEEDED,
                output=output,
                attempts=attempt,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                retry_history=tuple(history),
            )

    # max_attempts is at least 1, so the loop always returns
    raise AssertionError("unreachable")
