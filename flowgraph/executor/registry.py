import inspect
import warnings
from dataclasses import dataclass
from functools import lru_cache, partial
from typing import TYPE_CHECKING

import anyio
from fast_depends import inject

from flowgraph.exceptions import ErrorKind, ExecutorError

from .base import AgentExecutor

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Awaitable, Callable
    from typing import Any

    from flowgraph.step import Step

    AgentFn = Callable[..., Awaitable[str] | str]

# values the registry supplies by parameter name; everything else is left to
# fast_depends (defaults and `Depends`)
_PROVIDED_PARAMETERS = ("prompt", "step")


@lru_cache
def _get_available_parameters(fn) -> dict[str, dict[str, "Any"]]:
    init_signature = inspect.signature(fn)
    parameters = init_signature.parameters.values()
    return {
        param.name: {
            "annotation": param.annotation,
            "optional": param.default is not inspect.Parameter.empty,
        }
        for param in parameters
        if param.name != "self"
    }


@lru_cache(maxsize=None)
def _get_resolved_fn(fn: "AgentFn") -> "AgentFn":
    return inject(fn)


@dataclass
class AgentRunner:
    name: str
    fn: "AgentFn"

    def __post_init__(self) -> None:
        self.__name__ = self.name

    def _prepare_arguments(self, step: "Step", prompt: str) -> dict[str, "Any"]:
        parameters = _get_available_parameters(self.fn)
        provided = {"prompt": prompt, "step": step}

        resolved_args = {
            name: provided[name] for name in _PROVIDED_PARAMETERS if name in parameters
        }
        resolved_optional_args: set[str] = {
            name
            for name, param in parameters.items()
            if (
                # optional also captures dependencies defined as `a = Depends(_a)`
                param["optional"]
                # and `a: Annotated[T, Depends(_a)]`
                or getattr(param["annotation"], "__metadata__", None)
            )
        }

        if missing_args := (
            parameters.keys() - resolved_args.keys() - resolved_optional_args
        ):
            raise ExecutorError(
                f"Agent '{self.name}' has unresolvable parameters: {missing_args}",
                ErrorKind.VALIDATION,
            )

        return resolved_args

    async def run(self, step: "Step", prompt: str) -> str:
        arguments = self._prepare_arguments(step, prompt)
        agent_fn = _get_resolved_fn(self.fn)

        if inspect.iscoroutinefunction(self.fn):
            output = await agent_fn(**arguments)
        else:
            output = await anyio.to_thread.run_sync(
                partial(agent_fn, **arguments), abandon_on_cancel=True
            )

        return output if isinstance(output, str) else str(output)


class AgentRegistry(AgentExecutor):
    """
    An AgentExecutor backed by plain functions registered under an agent name. The
    function may be sync or async, and receives the resolved input as `prompt` and
    the step definition as `step` when it declares those parameters.

    ```python
    agents = AgentRegistry()

    @agents.agent("summarizer")
    async def summarize(prompt: str, client: Client = Depends(get_client)) -> str:
        return await client.complete(prompt)
    ```
    """

    def __init__(self) -> None:
        self._agents: dict[str, AgentRunner] = {}

    def agent(self, name: str) -> "Callable[[AgentFn], AgentRunner]":
        def decorator(fn: "AgentFn") -> AgentRunner:
            runner = AgentRunner(name=name, fn=fn)
            self.register(runner)
            return runner

        return decorator

    def register(self, runner: AgentRunner) -> None:
        if runner.name in self._agents:
            warnings.warn(
                f"Agent '{runner.name}' is already registered. This will override that"
                " implementation.",
                stacklevel=3,
            )

        self._agents[runner.name] = runner

    def has_agent(self, agent: str) -> bool:
        return agent in self._agents

    async def execute(self, step: "Step", resolved_input: str) -> str:
        if (runner := self._agents.get(step.agent)) is None:
            raise ExecutorError(
                f"Agent '{step.agent}' is not registered.", ErrorKind.VALIDATION
            )

        return await runner.run(step, resolved_input)
