from fast_depends import Depends

from .config import Config
from .context import ExecutionContext, StepResult, StepStatus
from .events import EventSink, EventType, FlowEvent, LoggingEventSink, MemoryEventSink
from .executor import AgentExecutor, AgentRegistry
from .flow import Flow, FlowSettings, OutputFormat, OutputSpec
from .loader import FlowLoader
from .report import render_report
from .retry import execute_step
from .runner import FlowResult, FlowRunner, RunStatus
from .step import (
    AggregateSource,
    InputSpec,
    RequestSource,
    RetryPolicy,
    Step,
    StepSource,
    Transform,
)
from .topology import DependencyResolver

__all__ = [
    "Depends",
    "Config",
    "ExecutionContext",
    "StepResult",
    "StepStatus",
    "EventSink",
    "EventType",
    "FlowEvent",
    "LoggingEventSink",
    "MemoryEventSink",
    "AgentExecutor",
    "AgentRegistry",
    "Flow",
    "FlowSettings",
    "OutputFormat",
    "OutputSpec",
    "FlowLoader",
    "render_report",
    "execute_step",
    "FlowResult",
    "FlowRunner",
    "RunStatus",
    "AggregateSource",
    "InputSpec",
    "RequestSource",
    "RetryPolicy",
    "Step",
    "StepSource",
    "Transform",
    "DependencyResolver",
]
