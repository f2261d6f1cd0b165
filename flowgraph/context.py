from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import ExtractionError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Iterator

    from .exceptions import ErrorKind


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)


@dataclass(kw_only=True, frozen=True, slots=True)
class AttemptRecord:
    attempt: int
    error: str
    kind: "ErrorKind"
    delay_ms: int = 0


@dataclass(kw_only=True, frozen=True, slots=True)
class StepResult:
    step_id: str
    status: StepStatus = StepStatus.PENDING
    output: str | None = None
    error: BaseException | None = None
    skip_reason: str | None = None
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_history: tuple[AttemptRecord, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCEEDED

    @property
    def duration(self) -> float | None:
        """Wall-clock seconds between start and completion, if both are known."""
        if self.started_at is None or self.completed_at is None:
            return None

        return (self.completed_at - self.started_at).total_seconds()


class ExecutionContext(Mapping[str, StepResult]):
    """
    Results of one flow run, keyed by step id. Only the runner records results;
    steps read from it when their input is computed at the start of a wave.
    """

    def __init__(self, step_ids: "Iterable[str]") -> None:
        self._results: dict[str, StepResult] = {
            step_id: StepResult(step_id=step_id) for step_id in step_ids
        }

    def __getitem__(self, step_id: str) -> StepResult:
        return self._results[step_id]

    def __iter__(self) -> "Iterator[str]":
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def record(self, result: StepResult) -> None:
        if result.step_id not in self._results:
            raise KeyError(result.step_id)

        self._results[result.step_id] = result

    def output_of(self, step_id: str) -> str:
        result = self._results[step_id]
        if not result.succeeded:
            raise ExtractionError(
                f"Step '{step_id}' has no output ({result.status.value})."
            )

        return result.output

    def outputs(self, step_ids: "Iterable[str]") -> dict[str, str]:
        """Outputs of the given steps that succeeded."""
        return {
            step_id: self._results[step_id].output
            for step_id in step_ids
            if self._results[step_id].succeeded
        }

    def with_status(self, *statuses: StepStatus) -> list[str]:
        return [
            step_id
            for step_id, result in self._results.items()
            if result.status in statuses
        ]
