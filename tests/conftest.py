import anyio
import pytest

from flowgraph.executor import AgentExecutor


class ScriptedExecutor(AgentExecutor):
    """
    Answers each step with its scripted outcomes in order, repeating the last one.
    Exceptions are raised, anything else is returned. Steps without a script echo
    `out-<step id>`.
    """

    def __init__(self) -> None:
        self.scripts: dict[str, list] = {}
        self.delays: dict[str, float] = {}
        self.unknown_agents: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.peak = 0

    def on(self, step_id: str, *outcomes, delay: float = 0) -> "ScriptedExecutor":
        if outcomes:
            self.scripts[step_id] = list(outcomes)
        if delay:
            self.delays[step_id] = delay

        return self

    def has_agent(self, agent: str) -> bool:
        return agent not in self.unknown_agents

    def attempts(self, step_id: str) -> int:
        return sum(1 for called, _ in self.calls if called == step_id)

    async def execute(self, step, resolved_input):
        self.calls.append((step.id, resolved_input))
        self.active += 1
        self.peak = max(self.peak, self.active)

        try:
            if delay := self.delays.get(step.id):
                await anyio.sleep(delay)

            script = self.scripts.get(step.id)
            if not script:
                return f"out-{step.id}"

            outcome = script.pop(0) if len(script) > 1 else script[0]
            if isinstance(outcome, BaseException):
                raise outcome

            return outcome(step, resolved_input) if callable(outcome) else outcome
        finally:
            self.active -= 1


@pytest.fixture
def executor():
    return ScriptedExecutor()


@pytest.fixture(
    params=[
        pytest.param(("asyncio", {"use_uvloop": False}), id="asyncio"),
        pytest.param(
            ("trio", {"restrict_keyboard_interrupt_to_checkpoints": True}), id="trio"
        ),
    ],
    scope="session",
)
def anyio_backend(request):
    return request.param
