import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import anyio
import sniffio

from .config import Config
from .context import ExecutionContext, StepResult, StepStatus
from .events import EventType, FlowEvent, LoggingEventSink
from .exceptions import (
    ExtractionError,
    FlowExecutionError,
    FlowTimeoutError,
    UnknownAgentError,
)
from .flow import OutputFormat
from .retry import execute_step
from .transforms import resolve_input

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any

    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

    from .events import EventSink
    from .executor import AgentExecutor
    from .flow import Flow, OutputSpec
    from .step import Step

    Job = tuple[Step, str]

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"


@dataclass(kw_only=True)
class FlowResult:
    flow_id: str
    flow_run_id: UUID
    status: RunStatus
    step_results: ExecutionContext
    started_at: datetime
    completed_at: datetime
    output: str | None = None
    error: BaseException | None = None

    @property
    def success(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def duration(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def failed_steps(self) -> dict[str, BaseException | None]:
        """Failed step ids mapped to their final error."""
        return {
            step_id: self.step_results[step_id].error
            for step_id in self.step_results.with_status(StepStatus.FAILED)
        }

    @property
    def skipped_steps(self) -> list[str]:
        return self.step_results.with_status(StepStatus.SKIPPED)

    def raise_for_status(self) -> None:
        if self.status in (RunStatus.SUCCEEDED, RunStatus.PARTIALLY_FAILED):
            return
        elif isinstance(self.error, FlowExecutionError):
            raise self.error

        raise FlowExecutionError(
            f"Flow '{self.flow_id}' failed: {self.error}", self.failed_steps
        ) from self.error


def format_output(output: "OutputSpec", context: ExecutionContext) -> str:
    if len(output.step_ids) == 1:
        return context.output_of(output.step_ids[0])

    outputs = {step_id: context.output_of(step_id) for step_id in output.step_ids}

    if output.format is OutputFormat.CONCAT:
        return "\n".join(content for content in outputs.values() if content)
    elif output.format is OutputFormat.JSON:
        return json.dumps(outputs)

    return "\n\n".join(
        f"## {step_id}\n\n{content}" for step_id, content in outputs.items()
    )


class FlowRunner:
    """
    Runs Flows wave by wave. Steps within a wave share a fixed-size pool of workers
    and report back to the runner, which alone records their results.

    ```python
    runner = FlowRunner(agents, sink=MemoryEventSink())
    result = await runner.run(flow, "Review the attached pull request.")
    ```
    """

    def __init__(
        self,
        agent_executor: "AgentExecutor",
        *,
        sink: "EventSink | None" = None,
        config: Config | None = None,
        **settings: "Any",
    ) -> None:
        self.agent_executor = agent_executor
        self.sink: "EventSink" = sink or LoggingEventSink()
        self.config = config or Config(**settings)

    def validate(self, flow: "Flow") -> "Flow":
        """Resolve the Flow and check every agent reference before anything runs."""
        flow.resolve()

        for step in flow.steps:
            if not self.agent_executor.has_agent(step.agent):
                raise UnknownAgentError(step.agent, step.id)

        return flow

    async def run(self, flow: "Flow", request: str = "") -> FlowResult:
        self.validate(flow)
        return await _FlowRun(self, flow, request).execute()

    def run_sync(self, flow: "Flow", request: str = "") -> FlowResult:
        try:
            sniffio.current_async_library()
            raise RuntimeError(
                "Calling run_sync within an event loop is forbidden as it starts its"
                " own event loop. Use `await runner.run(...)` instead."
            )
        except sniffio.AsyncLibraryNotFoundError:
            return anyio.run(self.run, flow, request, backend=self.config.async_backend)


class _FlowRun:
    """State of a single execution of a Flow."""

    def __init__(self, runner: FlowRunner, flow: "Flow", request: str) -> None:
        self.runner = runner
        self.flow = flow
        self.request = request
        self.flow_run_id = uuid4()

        self.plan = flow.execution_plan
        self.context = ExecutionContext(self.plan.order)

        settings = flow.settings
        self.max_parallelism: int = (
            settings.max_parallelism or runner.config.default_max_parallelism
        )
        self.fail_fast: bool = (
            runner.config.default_fail_fast
            if settings.fail_fast is None
            else settings.fail_fast
        )

        self.error: BaseException | None = None
        self._abort: anyio.Event | None = None

    def _emit(self, type: EventType, **fields: "Any") -> None:
        event = FlowEvent(
            type=type, flow_id=self.flow.id, flow_run_id=self.flow_run_id, **fields
        )
        try:
            self.runner.sink.emit(event)
        except Exception:
            logger.exception("event sink rejected %s", type.value)

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    async def execute(self) -> FlowResult:
        started_at = _now()
        self._abort = anyio.Event()
        timeout_ms = self.flow.settings.timeout_ms

        logger.info(
            "starting flow '%s' (run %s): %d steps in %d waves",
            self.flow.id,
            self.flow_run_id,
            len(self.flow.steps),
            len(self.plan.waves),
        )
        self._emit(
            EventType.FLOW_STARTED,
            payload={
                "step_count": len(self.flow.steps),
                "wave_count": len(self.plan.waves),
                "max_parallelism": self.max_parallelism,
                "fail_fast": self.fail_fast,
            },
        )

        with anyio.move_on_after(
            None if timeout_ms is None else timeout_ms / 1000
        ) as scope:
            for index, wave in enumerate(self.plan.waves):
                await self._run_wave(index, wave)

                if self.aborted:
                    later = self.plan.ordered(frozenset(self.plan.after(index)))
                    for step_id in later:
                        self._record(
                            self._skipped(step_id, "flow aborted by fail-fast")
                        )
                    break

        if scope.cancelled_caught:
            self.error = FlowTimeoutError(self.flow.id, timeout_ms)
            self._settle(StepStatus.RUNNING, self.error)

        self._skip_remaining()
        return self._finish(started_at)

    async def _run_wave(self, index: int, wave: frozenset[str]) -> None:
        step_ids = self.plan.ordered(wave)
        self._emit(EventType.WAVE_STARTED, wave=index, payload={"step_ids": step_ids})

        jobs: list["Job"] = []
        for step_id in step_ids:
            step = self.flow.get_step(step_id)

            if self.aborted:
                self._record(self._skipped(step_id, "flow aborted by fail-fast"))
            elif blocked := sorted(
                dep for dep in step.depends_on if not self.context[dep].succeeded
            ):
                self._record(
                    self._skipped(
                        step_id, f"dependencies did not succeed: {', '.join(blocked)}"
                    )
                )
            else:
                try:
                    prompt = resolve_input(step, self.request, self.context)
                except ExtractionError as e:
                    now = _now()
                    self._record(
                        StepResult(
                            step_id=step_id,
                            status=StepStatus.FAILED,
                            error=e,
                            started_at=now,
                            completed_at=now,
                        )
                    )
                else:
                    jobs.append((step, prompt))

        if jobs:
            await self._dispatch(index, jobs)

        results = [self.context[step_id] for step_id in step_ids]
        self._emit(
            EventType.WAVE_COMPLETED,
            wave=index,
            payload={
                status.value: sum(1 for r in results if r.status is status)
                for status in (
                    StepStatus.SUCCEEDED,
                    StepStatus.FAILED,
                    StepStatus.SKIPPED,
                )
            },
        )

    async def _dispatch(self, index: int, jobs: list["Job"]) -> None:
        job_send, job_receive = anyio.create_memory_object_stream["Job"](len(jobs))
        result_send, result_receive = anyio.create_memory_object_stream[StepResult]()

        for job in jobs:
            job_send.send_nowait(job)
        job_send.close()

        async with anyio.create_task_group() as tg:
            async with job_receive, result_send:
                for n in range(min(self.max_parallelism, len(jobs))):
                    tg.start_soon(
                        self._worker,
                        job_receive.clone(),
                        result_send.clone(),
                        name=f"{self.flow_run_id}:wave-{index}:worker-{n}",
                    )

            async with result_receive:
                async for result in result_receive:
                    self._record(result)

    async def _worker(
        self,
        jobs: "MemoryObjectReceiveStream[Job]",
        results: "MemoryObjectSendStream[StepResult]",
    ) -> None:
        async with jobs, results:
            async for step, prompt in jobs:
                if self.aborted:
                    await results.send(
                        self._skipped(step.id, "flow aborted by fail-fast")
                    )
                    continue

                await results.send(
                    StepResult(
                        step_id=step.id, status=StepStatus.RUNNING, started_at=_now()
                    )
                )
                result = await execute_step(
                    step,
                    prompt,
                    self.runner.agent_executor,
                    max_backoff_ms=self.runner.config.max_backoff_ms,
                )

                # stop the other workers from picking up new steps right away
                if result.status is StepStatus.FAILED and self.fail_fast:
                    self._abort.set()

                await results.send(result)

    def _skipped(self, step_id: str, reason: str) -> StepResult:
        now = _now()
        return StepResult(
            step_id=step_id,
            status=StepStatus.SKIPPED,
            skip_reason=reason,
            started_at=now,
            completed_at=now,
        )

    def _record(self, result: StepResult) -> None:
        self.context.record(result)
        step_id = result.step_id

        if result.status is StepStatus.RUNNING:
            self._emit(EventType.STEP_STARTED, step_id=step_id)
        elif result.status is StepStatus.SUCCEEDED:
            self._emit(
                EventType.STEP_COMPLETED,
                step_id=step_id,
                payload={
                    "attempts": result.attempts,
                    "duration": result.duration,
                    "output_length": len(result.output),
                },
            )
        elif result.status is StepStatus.FAILED:
            logger.info("step '%s' failed: %s", step_id, result.error)
            self._emit(
                EventType.STEP_FAILED,
                step_id=step_id,
                payload={
                    "attempts": result.attempts,
                    "error": str(result.error),
                    "error_type": type(result.error).__name__,
                },
            )
            if self.fail_fast:
                self._abort.set()
        elif result.status is StepStatus.SKIPPED:
            self._emit(
                EventType.STEP_SKIPPED,
                step_id=step_id,
                payload={"reason": result.skip_reason},
            )

    def _settle(self, status: StepStatus, error: BaseException) -> None:
        """Fail every step still in `status`, e.g. steps cut off by the flow timeout."""
        for step_id in self.context.with_status(status):
            current = self.context[step_id]
            self._record(
                StepResult(
                    step_id=step_id,
                    status=StepStatus.FAILED,
                    error=error,
                    attempts=max(current.attempts, 1),
                    started_at=current.started_at,
                    completed_at=_now(),
                )
            )

    def _skip_remaining(self) -> None:
        if self.error is not None:
            reason = "flow timed out"
        elif self.aborted:
            reason = "flow aborted by fail-fast"
        else:
            reason = "flow ended"

        for step_id in self.context.with_status(StepStatus.PENDING):
            self._record(self._skipped(step_id, reason))

    def _finish(self, started_at: datetime) -> FlowResult:
        failed = self.context.with_status(StepStatus.FAILED)
        skipped = self.context.with_status(StepStatus.SKIPPED)
        failures = {step_id: self.context[step_id].error for step_id in failed}
        output: str | None = None

        if self.error is not None:
            status = RunStatus.FAILED
        elif self.aborted:
            status = RunStatus.FAILED
            self.error = FlowExecutionError(
                f"Flow '{self.flow.id}' aborted after a step failed.", failures
            )
        elif missing := [
            step_id
            for step_id in self.flow.output.step_ids
            if not self.context[step_id].succeeded
        ]:
            status = RunStatus.FAILED
            self.error = FlowExecutionError(
                f"Flow '{self.flow.id}' output step(s) did not succeed:"
                f" {', '.join(missing)}.",
                failures,
            )
        else:
            output = format_output(self.flow.output, self.context)
            status = (
                RunStatus.PARTIALLY_FAILED if failed or skipped else RunStatus.SUCCEEDED
            )

        result = FlowResult(
            flow_id=self.flow.id,
            flow_run_id=self.flow_run_id,
            status=status,
            step_results=self.context,
            started_at=started_at,
            completed_at=_now(),
            output=output,
            error=self.error,
        )

        payload = {
            "status": status.value,
            "duration": result.duration,
            "succeeded": len(self.context.with_status(StepStatus.SUCCEEDED)),
            "failed": failed,
            "skipped": skipped,
        }
        if status is RunStatus.FAILED:
            logger.info(
                "flow '%s' (run %s) failed: %s",
                self.flow.id,
                self.flow_run_id,
                self.error,
            )
            self._emit(
                EventType.FLOW_FAILED, payload={**payload, "error": str(self.error)}
            )
        else:
            logger.info(
                "flow '%s' (run %s) %s", self.flow.id, self.flow_run_id, status.value
            )
            self._emit(EventType.FLOW_COMPLETED, payload=payload)

        return result
