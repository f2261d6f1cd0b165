from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from flowgraph.step import Step


class AgentExecutor(ABC):
    """
    Boundary to whatever actually runs an agent. Implementations raise
    `ExecutorError` with the matching `ErrorKind` so the runner can decide whether a
    failed attempt is worth retrying.
    """

    @abstractmethod
    async def execute(self, step: "Step", resolved_input: str) -> str:
        """Run the step's agent on its resolved input and return the agent output."""
        raise NotImplementedError()

    def has_agent(self, agent: str) -> bool:
        """Whether `agent` can be run. Checked for every step before a Flow starts."""
        return True
