"""
Flow module for the flowgraph framework.
"""

from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, PositiveInt, PrivateAttr

from .exceptions import FlowValidationError, InvalidOutputError, UnresolvedFlowError
from .flow_execution_plan import FlowExecutionPlan
from .step import DEFINITION_CONFIG, Step
from .topology import DependencyResolver, Topology

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any


class OutputFormat(Enum):
    MARKDOWN = "markdown"
    JSON = "json"
    CONCAT = "concat"


class OutputSpec(BaseModel):
    model_config = DEFINITION_CONFIG

    from_: str | tuple[str, ...] = Field(alias="from")
    format: OutputFormat = OutputFormat.MARKDOWN

    @property
    def step_ids(self) -> tuple[str, ...]:
        return (self.from_,) if isinstance(self.from_, str) else self.from_


class FlowSettings(BaseModel):
    """Unset values fall back to the runner's `Config`."""

    model_config = DEFINITION_CONFIG

    max_parallelism: PositiveInt | None = None
    fail_fast: bool | None = None
    timeout_ms: PositiveInt | None = Field(default=None, alias="timeout")


class Flow(BaseModel):
    model_config = DEFINITION_CONFIG

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    steps: tuple[Step, ...] = ()
    output: OutputSpec
    settings: FlowSettings = Field(default_factory=FlowSettings)

    _topology: Topology | None = PrivateAttr(default=None)
    _execution_plan: FlowExecutionPlan | None = PrivateAttr(default=None)

    @classmethod
    def from_steps(
        cls, flow_id: str, *steps: Step, output: str, **kwargs: "Any"
    ) -> "Flow":
        return cls(id=flow_id, steps=steps, output=OutputSpec(from_=output), **kwargs)

    def resolve(self) -> "Flow":
        if self.resolved:
            return self

        if not self.steps:
            raise FlowValidationError(f"Flow '{self.id}' must have at least one step.")

        topology = DependencyResolver(self.steps).topology()

        if not self.output.step_ids:
            raise FlowValidationError(f"Flow '{self.id}' does not declare an output.")

        for step_id in self.output.step_ids:
            if step_id not in topology.digraph:
                raise InvalidOutputError(step_id)

        self._topology = topology
        self._execution_plan = FlowExecutionPlan(
            order=tuple(topology.order), waves=tuple(topology.waves)
        )

        return self

    @property
    def resolved(self) -> bool:
        return self._execution_plan is not None

    @property
    def topology(self) -> Topology:
        if not self.resolved:
            raise UnresolvedFlowError()

        return self._topology

    @property
    def execution_plan(self) -> FlowExecutionPlan:
        if not self.resolved:
            raise UnresolvedFlowError()

        return self._execution_plan

    def get_step(self, step_id: str) -> Step:
        for step in self.steps:
            if step.id == step_id:
                return step

        raise KeyError(step_id)
