from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Mapping
    from typing import Any


class FlowgraphError(Exception):
    def __init__(self, *args: "Any", **kwargs: "Any") -> None:
        super().__init__(*args, **kwargs)


##
## FLOW VALIDATION
##


class FlowValidationError(FlowgraphError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class DuplicateStepError(FlowValidationError):
    def __init__(self, step_id: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step id '{step_id}' is declared more than once.")


class MissingDependencyError(FlowValidationError):
    def __init__(self, dependency_id: str, step_id: str) -> None:
        self.dependency_id = dependency_id
        self.step_id = step_id
        super().__init__(
            f"Dependency '{dependency_id}' of step '{step_id}' not found in step"
            " definitions."
        )


class CyclicFlowError(FlowValidationError):
    def __init__(self, cycle: "Iterable[str]") -> None:
        self.cycle = tuple(cycle)
        super().__init__(
            f"Cycle detected in dependency graph: {' -> '.join(self.cycle)}"
        )


class InvalidOutputError(FlowValidationError):
    def __init__(self, step_id: str) -> None:
        self.step_id = step_id
        super().__init__(f"Flow output references non-existent step '{step_id}'.")


class UnknownAgentError(FlowValidationError):
    def __init__(self, agent: str, step_id: str) -> None:
        self.agent = agent
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' references unknown agent '{agent}'.")


class InvalidInputSourceError(FlowValidationError):
    def __init__(self, source_id: str, step_id: str) -> None:
        self.source_id = source_id
        self.step_id = step_id
        super().__init__(
            f"Step '{step_id}' reads input from '{source_id}', which is not one of"
            " its dependencies."
        )


class UnresolvedFlowError(FlowgraphError):
    def __init__(self) -> None:
        super().__init__("Flows must be resolved before they can be used.")


##
## TRANSFORMS
##


class ExtractionError(FlowgraphError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


##
## AGENT EXECUTION
##


class ErrorKind(Enum):
    RATE_LIMIT = "rate_limit"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    AUTH = "auth"
    OTHER = "other"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMIT, ErrorKind.CONNECTION, ErrorKind.TIMEOUT}
)


class ExecutorError(FlowgraphError):
    """An error raised at the agent executor boundary, tagged with its kind."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.OTHER) -> None:
        self.kind = kind
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class StepTimeoutError(ExecutorError):
    def __init__(self, step_id: str, timeout_ms: int) -> None:
        self.step_id = step_id
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Step '{step_id}' did not complete within {timeout_ms}ms.",
            ErrorKind.TIMEOUT,
        )


##
## FLOW EXECUTION
##


class FlowTimeoutError(FlowgraphError):
    def __init__(self, flow_id: str, timeout_ms: int) -> None:
        self.flow_id = flow_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Flow '{flow_id}' did not complete within {timeout_ms}ms.")


class FlowExecutionError(FlowgraphError):
    def __init__(
        self, message: str, failures: "Mapping[str, BaseException] | None" = None
    ) -> None:
        self.failures = dict(failures or {})
        if self.failures:
            details = "\n  ".join(
                f"{step_id}: {error}" for step_id, error in self.failures.items()
            )
            message = f"{message} Failed steps:\n  {details}"

        super().__init__(message)


##
## LOADING
##


class FlowLoadError(FlowgraphError):
    def __init__(self, flow_id: str, reason: "Any") -> None:
        self.flow_id = flow_id
        super().__init__(f"Failed to load flow '{flow_id}': {reason}")
